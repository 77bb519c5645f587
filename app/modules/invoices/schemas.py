from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime
from enum import Enum


class InvoiceStatus(str, Enum):
    PENDIENTE = "Pendiente"
    PARCIAL = "Parcial"
    PAGADA = "Pagada"
    VENCIDA = "Vencida"
    NOTA_CREDITO_PARCIAL = "Nota de Crédito Parcial"
    ANULADA = "Anulada"


class PaymentMethod(str, Enum):
    EFECTIVO = "Efectivo"
    TRANSFERENCIA = "Transferencia"
    CHEQUE = "Cheque"
    TARJETA = "Tarjeta"


# Line Item Schemas (compartidos por facturas y notas de crédito)
class LineItemCreate(BaseModel):
    product_id: UUID
    product_name: Optional[str] = Field(None, max_length=100, description="Si se omite se toma del producto")
    quantity: Decimal = Field(..., gt=0, description="Cantidad debe ser mayor a 0")
    price: Decimal = Field(..., ge=0, description="Precio unitario sin impuestos")
    discount: Decimal = Field(Decimal("0"), ge=0, le=100, description="Descuento de línea en %")

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v):
        if v <= 0:
            raise ValueError('La cantidad debe ser mayor a 0')
        return v


class LineItemOut(BaseModel):
    id: UUID
    position: int
    product_id: UUID
    product_name: str
    quantity: Decimal
    price: Decimal
    discount: Decimal
    subtotal: Decimal
    total: Decimal

    class Config:
        from_attributes = True


# Invoice Schemas
class InvoiceCreate(BaseModel):
    client_id: Optional[UUID] = None
    client_name: Optional[str] = Field(None, max_length=200)
    client_rnc: Optional[str] = Field(None, max_length=20)
    client_address: Optional[str] = Field(None, max_length=255)
    ncf_type: str = Field(..., min_length=1, max_length=5, description="B01, B02, ... o S/C")
    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    items: List[LineItemCreate] = Field(..., min_length=1, description="Debe incluir al menos un item")
    discount: Decimal = Field(Decimal("0"), ge=0, le=100, description="Descuento general en %")
    tax: Decimal = Field(Decimal("0"), ge=0, description="ITBIS sobre el subtotal con descuento")
    notes: Optional[str] = None
    sold_by: Optional[str] = Field(None, max_length=100)
    seller_email: Optional[str] = Field(None, max_length=100)
    payment_terms: Optional[str] = Field(None, max_length=50)

    @field_validator('ncf_type')
    @classmethod
    def normalize_ncf_type(cls, v):
        return v.strip().upper()

    @model_validator(mode='after')
    def validate_client_and_dates(self):
        if not self.client_id and not self.client_name:
            raise ValueError('Debe indicar el cliente (client_id o client_name)')
        if self.due_date and self.issue_date and self.due_date < self.issue_date:
            raise ValueError('La fecha de vencimiento no puede ser anterior a la fecha de emisión')
        return self


class InvoiceUpdate(InvoiceCreate):
    """
    Reemplazo completo de la factura.

    `ncf_type` se acepta por compatibilidad con el formulario pero el NCF y
    el número ya emitidos no cambian.
    """


class InvoiceOut(BaseModel):
    id: UUID
    number: str
    ncf: Optional[str]
    ncf_type: str
    client_id: Optional[UUID]
    client_name: str
    client_rnc: Optional[str]
    client_address: Optional[str] = None
    sold_by: Optional[str] = None
    seller_email: Optional[str] = None
    payment_terms: Optional[str] = None
    issue_date: date
    due_date: date
    status: InvoiceStatus
    display_status: InvoiceStatus
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceOut):
    """Factura con sus items y referencias a pagos y notas de crédito"""
    items: List[LineItemOut]
    payment_ids: List[UUID] = []
    credit_note_ids: List[UUID] = []


# Payment Schemas
class PaymentCreate(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(..., description="Monto debe ser mayor a 0")
    method: PaymentMethod
    payment_date: date = Field(default_factory=date.today)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=100)


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = None
    method: Optional[PaymentMethod] = None
    payment_date: Optional[date] = None
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentOut(BaseModel):
    id: UUID
    invoice_id: UUID
    invoice_number: str
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    reference: Optional[str]
    notes: Optional[str]
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# Credit Note Schemas
class CreditNoteCreate(BaseModel):
    invoice_id: UUID
    reason: str = Field(..., min_length=1, max_length=255)
    items: List[LineItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None
    issue_date: date = Field(default_factory=date.today)


class CreditNoteUpdate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)
    items: List[LineItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None


class CreditNoteOut(BaseModel):
    id: UUID
    number: str
    ncf: str
    ncf_type: str
    invoice_id: UUID
    invoice_number: str
    invoice_ncf: Optional[str]
    client_id: Optional[UUID]
    client_name: str
    client_rnc: Optional[str]
    issue_date: date
    reason: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str]
    items: List[LineItemOut]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Result envelopes (frontera RPC)
class OperationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    retryable: bool = False


class InvoiceResult(OperationResult):
    invoice: Optional[InvoiceDetail] = None


class PaymentResult(OperationResult):
    payment: Optional[PaymentOut] = None


class CreditNoteResult(OperationResult):
    credit_note: Optional[CreditNoteOut] = None


class ReconciliationSummary(BaseModel):
    invoices_checked: int
    invoices_updated: int


class ReconciliationResult(OperationResult):
    summary: Optional[ReconciliationSummary] = None


class InvoiceListResult(BaseModel):
    invoices: List[InvoiceOut]
    total: int
