"""
Derivación del estado de una factura.

El estado nunca se asigna a mano: es una función pura de (total, pagos,
notas de crédito) que se recalcula en cada mutación y en la conciliación.
"""
from decimal import Decimal

from app.common.validators import to_decimal
from app.core.config import settings
from app.modules.invoices.models import InvoiceStatus


def derive_invoice_status(total, payments_total, credit_notes_total, tolerance: Decimal = None) -> str:
    """
    Reglas, evaluadas en orden:

    1. pagado ≈ total y las notas de crédito cubren el total sin pagos → Anulada
    2. pagado ≈ total → Pagada
    3. pagado > 0 con aporte de notas de crédito → Nota de Crédito Parcial
    4. pagado > 0 → Parcial
    5. Pendiente
    """
    tolerance = settings.BALANCE_TOLERANCE if tolerance is None else tolerance
    total = to_decimal(total)
    payments_total = to_decimal(payments_total)
    credit_notes_total = to_decimal(credit_notes_total)
    paid = payments_total + credit_notes_total

    if paid >= total - tolerance:
        if credit_notes_total > 0 and credit_notes_total >= total - tolerance and payments_total <= tolerance:
            return InvoiceStatus.ANULADA.value
        return InvoiceStatus.PAGADA.value
    if paid > 0:
        if credit_notes_total > 0:
            return InvoiceStatus.NOTA_CREDITO_PARCIAL.value
        return InvoiceStatus.PARCIAL.value
    return InvoiceStatus.PENDIENTE.value
