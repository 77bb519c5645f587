"""
Pagos y conciliación de saldos.

`paid_amount` y `status` de una factura son un caché de
Σ pagos + Σ notas de crédito; el conciliador es el único que los escribe y
siempre los recalcula desde los registros de pagos y notas de crédito.
"""
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.cache import invalidate_views
from app.common.exceptions import NotFoundError, ValidationError, OverpaymentError
from app.common.validators import money
from app.core.config import settings
from app.database.database import transaction
from app.modules.invoices.models import Invoice, Payment, CreditNote, InvoiceStatus
from app.modules.invoices.schemas import PaymentCreate, PaymentUpdate
from app.modules.invoices.status import derive_invoice_status

logger = logging.getLogger(__name__)


def month_range(month: int, year: int) -> Tuple[date, date]:
    """[inicio, fin) del mes indicado"""
    if not 1 <= month <= 12:
        raise ValidationError("Mes inválido")
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


class PaymentReconciler:
    """Aplica y revierte pagos y notas de crédito sobre el saldo de una factura."""

    def __init__(self, db: Session):
        self.db = db

    def totals_for(self, invoice_id: UUID) -> Tuple[Decimal, Decimal]:
        """(Σ pagos, Σ notas de crédito) leídos de las tablas, no del caché de la factura"""
        payments_total = self.db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
            Payment.invoice_id == invoice_id
        ).scalar()
        credit_notes_total = self.db.query(func.coalesce(func.sum(CreditNote.total), 0)).filter(
            CreditNote.invoice_id == invoice_id
        ).scalar()
        return money(payments_total), money(credit_notes_total)

    def recompute_invoice(self, invoice: Invoice) -> bool:
        """Recalcular paid_amount y status; retorna True si algo cambió."""
        self.db.flush()
        payments_total, credit_notes_total = self.totals_for(invoice.id)
        paid = payments_total + credit_notes_total
        status = derive_invoice_status(invoice.total, payments_total, credit_notes_total)

        changed = money(invoice.paid_amount) != paid or invoice.status != status
        if changed:
            logger.debug(
                f"Invoice {invoice.number}: paid {invoice.paid_amount} -> {paid}, "
                f"status {invoice.status} -> {status}"
            )
            invoice.paid_amount = paid
            invoice.status = status
            self.db.flush()
        return changed

    def apply_payment(self, invoice: Invoice, payment: Payment) -> None:
        payment.invoice_id = invoice.id
        payment.invoice_number = invoice.number
        self.db.add(payment)
        self.recompute_invoice(invoice)

    def reverse_payment(self, invoice: Invoice, payment: Payment) -> None:
        self.db.delete(payment)
        self.db.flush()
        self.db.expire(invoice, ["payments"])
        self.recompute_invoice(invoice)

    def apply_credit_note(self, invoice: Invoice, credit_note: CreditNote) -> None:
        """Igual que un pago, pero el aporte queda registrado como nota de crédito."""
        credit_note.invoice_id = invoice.id
        self.db.add(credit_note)
        self.recompute_invoice(invoice)

    def reconcile_all(self) -> dict:
        """
        Barrido de consistencia: recalcula todas las facturas desde los pagos
        y notas de crédito. Idempotente; cada factura se confirma por separado.
        """
        invoice_ids = [row[0] for row in self.db.query(Invoice.id).order_by(Invoice.created_at).all()]
        updated = 0
        for invoice_id in invoice_ids:
            with transaction(self.db):
                invoice = self.db.get(Invoice, invoice_id)
                if invoice is None:
                    # Eliminada mientras corría el barrido
                    continue
                if self.recompute_invoice(invoice):
                    updated += 1

        logger.info(f"Reconciliation finished: {len(invoice_ids)} invoices checked, {updated} updated")
        if updated:
            invalidate_views("/invoices", "/payments")
        return {"invoices_checked": len(invoice_ids), "invoices_updated": updated}


class PaymentService:

    def __init__(self, db: Session):
        self.db = db
        self.reconciler = PaymentReconciler(db)

    def create_payment(self, payment_data: PaymentCreate) -> Payment:
        """Registrar un abono contra una factura"""
        amount = money(payment_data.amount)
        if amount <= 0:
            raise ValidationError("El monto debe ser mayor a 0")

        with transaction(self.db):
            invoice = self._get_invoice(payment_data.invoice_id)
            if invoice.status == InvoiceStatus.ANULADA.value:
                raise ValidationError("No se pueden registrar pagos en una factura anulada")

            payments_total, credit_notes_total = self.reconciler.totals_for(invoice.id)
            balance = money(invoice.total) - payments_total - credit_notes_total
            if amount > balance + settings.BALANCE_TOLERANCE:
                raise OverpaymentError(f"El monto ({amount}) excede el saldo pendiente ({balance})")

            payment = Payment(
                amount=amount,
                method=payment_data.method.value,
                payment_date=payment_data.payment_date,
                reference=payment_data.reference,
                notes=payment_data.notes,
                created_by=payment_data.created_by,
            )
            self.reconciler.apply_payment(invoice, payment)

        self.db.refresh(payment)
        logger.info(f"Payment {amount} registered for invoice {invoice.number}; status {invoice.status}")
        invalidate_views("/invoices", "/payments")
        return payment

    def update_payment(self, payment_id: UUID, payment_data: PaymentUpdate) -> Payment:
        changes = payment_data.model_dump(exclude_unset=True)
        if "amount" in changes:
            if changes["amount"] is None or money(changes["amount"]) <= 0:
                raise ValidationError("El monto debe ser mayor a 0")
            changes["amount"] = money(changes["amount"])

        with transaction(self.db):
            payment = self._get_payment(payment_id)
            invoice = self._get_invoice(payment.invoice_id)

            if "amount" in changes:
                payments_total, credit_notes_total = self.reconciler.totals_for(invoice.id)
                new_paid = payments_total - money(payment.amount) + changes["amount"] + credit_notes_total
                if new_paid > money(invoice.total) + settings.BALANCE_TOLERANCE:
                    raise OverpaymentError(
                        f"El nuevo monto haría que lo pagado ({new_paid}) exceda el total ({invoice.total})"
                    )

            for field, value in changes.items():
                if field == "method" and value is not None:
                    value = value.value
                if value is None and field in ("method", "payment_date"):
                    continue
                setattr(payment, field, value)

            self.reconciler.recompute_invoice(invoice)

        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} updated; invoice {invoice.number} status {invoice.status}")
        invalidate_views("/invoices", "/payments")
        return payment

    def delete_payment(self, payment_id: UUID) -> str:
        with transaction(self.db):
            payment = self._get_payment(payment_id)
            invoice = self._get_invoice(payment.invoice_id)
            self.reconciler.reverse_payment(invoice, payment)

        logger.info(f"Payment {payment_id} deleted; invoice {invoice.number} status {invoice.status}")
        invalidate_views("/invoices", "/payments")
        return "Pago eliminado correctamente"

    def get_payments_by_invoice(self, invoice_id: UUID):
        self._get_invoice(invoice_id)
        return (
            self.db.query(Payment)
            .filter(Payment.invoice_id == invoice_id)
            .order_by(Payment.payment_date, Payment.created_at)
            .all()
        )

    def get_payments(self, month: Optional[int] = None, year: Optional[int] = None):
        query = self.db.query(Payment)
        if month and year:
            start, end = month_range(month, year)
            query = query.filter(Payment.payment_date >= start, Payment.payment_date < end)
        return query.order_by(Payment.payment_date.desc(), Payment.created_at.desc()).all()

    def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Factura no encontrada")
        return invoice

    def _get_payment(self, payment_id: UUID) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("Pago no encontrado")
        return payment
