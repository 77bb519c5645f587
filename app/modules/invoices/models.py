from app.database.database import Base
from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint, Numeric, Date, Text, Uuid
from sqlalchemy.orm import relationship
from datetime import date
from app.common.mixins import IdentityMixin, TimestampMixin
import enum


class InvoiceStatus(enum.Enum):
    PENDIENTE = "Pendiente"
    PARCIAL = "Parcial"
    PAGADA = "Pagada"
    VENCIDA = "Vencida"  # Solo de presentación, nunca se persiste
    NOTA_CREDITO_PARCIAL = "Nota de Crédito Parcial"
    ANULADA = "Anulada"


class Invoice(Base, IdentityMixin, TimestampMixin):
    __tablename__ = "invoices"

    # Numeración: número interno (FAC-2026-001) y comprobante fiscal (NCF)
    number = Column(String(50), nullable=False)
    ncf = Column(String(19), nullable=True)  # NULL para documentos sin comprobante (S/C)
    ncf_type = Column(String(5), nullable=False)

    # Snapshot del cliente al momento de emitir
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=True)
    client_name = Column(String(200), nullable=False)
    client_rnc = Column(String(20), nullable=True)
    client_address = Column(String(255), nullable=True)

    sold_by = Column(String(100), nullable=True)
    seller_email = Column(String(100), nullable=True)
    payment_terms = Column(String(50), nullable=True)  # 'Contado', '15 Días', etc.

    # Dates
    issue_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=False)

    status = Column(String(30), nullable=False, default=InvoiceStatus.PENDIENTE.value, index=True)

    # Totals (calculated)
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    discount = Column(Numeric(5, 2), nullable=False, default=0)  # Descuento general %
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    # Caché de Σ pagos + Σ notas de crédito; solo la escribe el conciliador
    paid_amount = Column(Numeric(15, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)

    # Relationships
    client = relationship("Client")
    items = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
        order_by="InvoiceItem.position"
    )
    payments = relationship("Payment", back_populates="invoice")
    credit_notes = relationship("CreditNote", back_populates="invoice")

    __table_args__ = (
        UniqueConstraint("number", name="uq_invoice_number"),
        UniqueConstraint("ncf", name="uq_invoice_ncf"),
    )

    @property
    def balance_due(self):
        """Calcular saldo pendiente"""
        return self.total - self.paid_amount

    @property
    def display_status(self) -> str:
        """'Vencida' se deriva al mostrar: pendiente con fecha de vencimiento pasada."""
        if self.status == InvoiceStatus.PENDIENTE.value and self.due_date and self.due_date < date.today():
            return InvoiceStatus.VENCIDA.value
        return self.status

    @property
    def payment_ids(self):
        return [p.id for p in self.payments]

    @property
    def credit_note_ids(self):
        return [cn.id for cn in self.credit_notes]


class InvoiceItem(Base, IdentityMixin):
    __tablename__ = "invoice_items"

    invoice_id = Column(Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)

    # Snapshot data (para preservar información si el producto cambia)
    product_name = Column(String(100), nullable=False)

    quantity = Column(Numeric(12, 3), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False, default=0)  # %
    subtotal = Column(Numeric(15, 2), nullable=False)  # quantity * price
    total = Column(Numeric(15, 2), nullable=False)     # subtotal - descuento de línea

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base, IdentityMixin, TimestampMixin):
    __tablename__ = "payments"

    invoice_id = Column(Uuid, ForeignKey("invoices.id"), nullable=False, index=True)
    invoice_number = Column(String(50), nullable=False)

    amount = Column(Numeric(15, 2), nullable=False)
    method = Column(String(20), nullable=False)
    payment_date = Column(Date, nullable=False, default=date.today)
    reference = Column(String(100), nullable=True)  # Número de referencia, cheque, etc.
    notes = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)

    invoice = relationship("Invoice", back_populates="payments")


class CreditNote(Base, IdentityMixin, TimestampMixin):
    __tablename__ = "credit_notes"

    number = Column(String(50), nullable=False)
    ncf = Column(String(19), nullable=False)
    ncf_type = Column(String(5), nullable=False, default="B04")

    # Factura original (snapshot de su numeración)
    invoice_id = Column(Uuid, ForeignKey("invoices.id"), nullable=False, index=True)
    invoice_number = Column(String(50), nullable=False)
    invoice_ncf = Column(String(19), nullable=True)

    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=True)
    client_name = Column(String(200), nullable=False)
    client_rnc = Column(String(20), nullable=True)

    issue_date = Column(Date, nullable=False, default=date.today)
    reason = Column(String(255), nullable=False)

    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    invoice = relationship("Invoice", back_populates="credit_notes")
    items = relationship(
        "CreditNoteItem", back_populates="credit_note", cascade="all, delete-orphan",
        order_by="CreditNoteItem.position"
    )

    __table_args__ = (
        UniqueConstraint("number", name="uq_credit_note_number"),
        UniqueConstraint("ncf", name="uq_credit_note_ncf"),
    )


class CreditNoteItem(Base, IdentityMixin):
    __tablename__ = "credit_note_items"

    credit_note_id = Column(Uuid, ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    product_name = Column(String(100), nullable=False)

    quantity = Column(Numeric(12, 3), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    subtotal = Column(Numeric(15, 2), nullable=False)
    total = Column(Numeric(15, 2), nullable=False)

    credit_note = relationship("CreditNote", back_populates="items")
