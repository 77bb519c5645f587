"""
Validadores y utilidades numéricas para República Dominicana
"""
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")


def to_decimal(value) -> Decimal:
    """Convierte int/float/str/None a Decimal sin arrastrar error binario."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Redondeo monetario a 2 decimales (half-up, como en la factura impresa)."""
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def quantity(value) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def validate_rnc(rnc: str) -> bool:
    """
    Valida RNC o cédula dominicana.
    - RNC: 9 dígitos
    - Cédula: 11 dígitos
    Se aceptan guiones y espacios como separadores.
    """
    cleaned = re.sub(r'[\s\-]', '', rnc)
    if not cleaned.isdigit():
        return False
    return len(cleaned) in (9, 11)


def normalize_rnc(rnc: Optional[str]) -> Optional[str]:
    if rnc is None:
        return None
    cleaned = re.sub(r'[\s\-]', '', rnc)
    return cleaned or None


def validate_ncf(ncf: str) -> bool:
    """NCF: letra de serie + tipo de 2 dígitos + secuencia de 8 dígitos (ej. B0100000001)."""
    return bool(re.match(r'^[A-Z]\d{2}\d{8}$', ncf))
