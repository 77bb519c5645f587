"""
Errores de dominio del ledger fiscal.

Los servicios lanzan estas excepciones dentro de la transacción; la capa de
frontera (`app.common.results`) las traduce a la respuesta uniforme
`{success, message}` sin dejar que crucen hacia el cliente.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID


class LedgerError(Exception):
    """Base de todos los errores de negocio del ledger."""

    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Datos de entrada faltantes o inválidos; se rechaza antes de abrir transacción."""


class NotFoundError(LedgerError):
    """La factura, pago, nota de crédito o producto referenciado no existe."""


@dataclass(frozen=True)
class StockShortage:
    product_id: UUID
    product_name: str
    available: Decimal
    requested: Decimal

    def describe(self) -> str:
        return f"{self.product_name} (Disponible: {self.available}, Solicitado: {self.requested})"


class InsufficientStockError(LedgerError):
    """Uno o más productos no tienen existencia suficiente. Nada se escribe."""

    def __init__(self, shortages: List[StockShortage]):
        self.shortages = list(shortages)
        detail = "; ".join(s.describe() for s in self.shortages)
        super().__init__(f"Stock insuficiente para: {detail}")


class SequenceConflictError(LedgerError):
    """
    Violación de unicidad al persistir un NCF o número de documento.

    El contador ya fue resincronizado cuando el llamador recibe este error;
    reenviar la solicitud es seguro.
    """

    retryable = True

    def __init__(self, sequence_key: Optional[str] = None):
        self.sequence_key = sequence_key
        super().__init__("Error de secuencia NCF (duplicado), intente de nuevo.")


class CreditLimitExceededError(ValidationError):
    """La cantidad acreditada supera la cantidad facturada pendiente de acreditar."""

    def __init__(self, product_names: List[str]):
        self.product_names = list(product_names)
        super().__init__(
            "La cantidad acreditada excede la cantidad facturada para: "
            + ", ".join(self.product_names)
        )


class OverpaymentError(ValidationError):
    """El pago excede el saldo pendiente de la factura."""


class TransactionConflictError(LedgerError):
    """La base de datos abortó la transacción por acceso concurrente (serialización o deadlock)."""

    retryable = True

    def __init__(self):
        super().__init__("La operación entró en conflicto con otra transacción, intente de nuevo.")
