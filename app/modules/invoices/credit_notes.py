"""
Notas de crédito contra una factura.

El impuesto acreditado es proporcional: cada item aporta
(total del item / subtotal de la factura) × impuesto de la factura, con el
descuento general de la factura ya aplicado al total del item.
Las cantidades acreditadas vuelven al inventario (ENTRADA bajo el número
de la nota); editar o eliminar la nota las vuelve a descontar.
"""
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.common.cache import invalidate_views
from app.common.exceptions import CreditLimitExceededError, NotFoundError, ValidationError
from app.common.validators import money, quantity, to_decimal
from app.core.config import settings
from app.database.database import transaction
from app.modules.inventory.service import StockLedger, StockItem, StockDirection, MovementMeta
from app.modules.invoices.models import Invoice, CreditNote, CreditNoteItem
from app.modules.invoices.payments import PaymentReconciler, month_range
from app.modules.invoices.schemas import CreditNoteCreate, CreditNoteUpdate, LineItemCreate
from app.modules.invoices.service import calculate_line_totals, quantities_by_product
from app.modules.products.models import MovementType
from app.modules.sequences.service import SequenceAllocator, handle_sequence_conflict, number_key

logger = logging.getLogger(__name__)


def proportional_tax(item_totals: List[Decimal], invoice_subtotal, invoice_tax) -> Decimal:
    invoice_subtotal = to_decimal(invoice_subtotal)
    if invoice_subtotal <= 0:
        return Decimal("0.00")
    invoice_tax = to_decimal(invoice_tax)
    return money(sum((to_decimal(t) / invoice_subtotal * invoice_tax for t in item_totals), Decimal("0")))


def ensure_within_invoice_total(invoice_total, credited_total, tolerance: Decimal = None) -> None:
    """Lo acreditado entre todas las notas vigentes no puede superar el total de la factura."""
    tolerance = settings.BALANCE_TOLERANCE if tolerance is None else tolerance
    if to_decimal(credited_total) > to_decimal(invoice_total) + tolerance:
        raise ValidationError(
            f"El total acreditado ({money(credited_total)}) excede el total de la factura ({money(invoice_total)})"
        )


class CreditNoteService:

    def __init__(self, db: Session):
        self.db = db
        self.stock = StockLedger(db)
        self.reconciler = PaymentReconciler(db)

    def create_credit_note(self, data: CreditNoteCreate) -> CreditNote:
        ncf_type = settings.CREDIT_NOTE_NCF_TYPE
        year = data.issue_date.year

        try:
            with transaction(self.db):
                invoice = self._get_invoice(data.invoice_id)
                self._check_creditable(invoice, data.items)

                allocator = SequenceAllocator(self.db)
                number = allocator.next_document_number(settings.CREDIT_NOTE_NUMBER_PREFIX, year)
                ncf = allocator.next_ncf(ncf_type)

                credit_note = CreditNote(
                    number=number,
                    ncf=ncf,
                    ncf_type=ncf_type,
                    invoice_number=invoice.number,
                    invoice_ncf=invoice.ncf,
                    client_id=invoice.client_id,
                    client_name=invoice.client_name,
                    client_rnc=invoice.client_rnc,
                    issue_date=data.issue_date,
                    reason=data.reason,
                    notes=data.notes,
                )
                self._replace_items(credit_note, invoice, data.items)
                self._check_credited_total(invoice, credit_note)
                self.reconciler.apply_credit_note(invoice, credit_note)

                self.stock.adjust(
                    self._stock_items(credit_note),
                    StockDirection.ADD,
                    self._movement(credit_note),
                )
        except IntegrityError as e:
            handle_sequence_conflict(
                self.db, e, ncf_type, number_key(settings.CREDIT_NOTE_NUMBER_PREFIX, year)
            )

        self.db.refresh(credit_note)
        logger.info(
            f"Credit note {credit_note.number} (NCF {credit_note.ncf}) for invoice "
            f"{credit_note.invoice_number}, total {credit_note.total}"
        )
        invalidate_views("/invoices", "/inventory", "/payments")
        return credit_note

    def update_credit_note(self, credit_note_id: UUID, data: CreditNoteUpdate) -> CreditNote:
        """Reemplazar items de la nota; número y NCF no cambian."""
        with transaction(self.db):
            credit_note = self._get_credit_note(credit_note_id)
            invoice = self._get_invoice(credit_note.invoice_id)
            self._check_creditable(invoice, data.items, exclude_id=credit_note.id)

            self.stock.adjust(self._stock_items(credit_note), StockDirection.SUBTRACT)
            self.stock.remove_movements(credit_note.number)

            credit_note.reason = data.reason
            credit_note.notes = data.notes
            credit_note.items.clear()
            self.db.flush()
            self._replace_items(credit_note, invoice, data.items)
            self._check_credited_total(invoice, credit_note)
            self.db.flush()

            self.stock.adjust(self._stock_items(credit_note), StockDirection.ADD, self._movement(credit_note))
            self.reconciler.recompute_invoice(invoice)

        self.db.refresh(credit_note)
        logger.info(f"Credit note {credit_note.number} updated, total {credit_note.total}")
        invalidate_views("/invoices", "/inventory", "/payments")
        return credit_note

    def delete_credit_note(self, credit_note_id: UUID) -> str:
        with transaction(self.db):
            credit_note = self._get_credit_note(credit_note_id)
            invoice = self._get_invoice(credit_note.invoice_id)
            number = credit_note.number

            self.stock.adjust(self._stock_items(credit_note), StockDirection.SUBTRACT)
            self.stock.remove_movements(number)
            self.db.delete(credit_note)
            self.db.flush()
            self.db.expire(invoice, ["credit_notes"])
            self.reconciler.recompute_invoice(invoice)

        logger.info(f"Credit note {number} deleted; invoice {invoice.number} status {invoice.status}")
        invalidate_views("/invoices", "/inventory", "/payments")
        return f"Nota de crédito {number} eliminada correctamente"

    def get_credit_note_by_id(self, credit_note_id: UUID) -> CreditNote:
        return self._get_credit_note(credit_note_id)

    def get_credit_notes_by_invoice(self, invoice_id: UUID) -> List[CreditNote]:
        self._get_invoice(invoice_id)
        return (
            self.db.query(CreditNote)
            .options(selectinload(CreditNote.items))
            .filter(CreditNote.invoice_id == invoice_id)
            .order_by(CreditNote.issue_date, CreditNote.created_at)
            .all()
        )

    def get_credit_notes(self, month: Optional[int] = None, year: Optional[int] = None) -> List[CreditNote]:
        query = self.db.query(CreditNote).options(selectinload(CreditNote.items))
        if month and year:
            start, end = month_range(month, year)
            query = query.filter(CreditNote.issue_date >= start, CreditNote.issue_date < end)
        return query.order_by(CreditNote.issue_date.desc(), CreditNote.created_at.desc()).all()

    def _check_creditable(self, invoice: Invoice, items: List[LineItemCreate], exclude_id: Optional[UUID] = None) -> None:
        """
        Por producto: lo acreditado en las demás notas vigentes más lo nuevo
        no puede superar lo facturado, y cada línea debe usar el precio y
        descuento de la factura.
        """
        invoiced = quantities_by_product(invoice.items)
        foreign = [str(item.product_id) for item in items if item.product_id not in invoiced]
        if foreign:
            raise ValidationError(f"Producto(s) no incluidos en la factura {invoice.number}: {', '.join(foreign)}")

        already = quantities_by_product(
            item
            for credit_note in invoice.credit_notes if credit_note.id != exclude_id
            for item in credit_note.items
        )
        requested = quantities_by_product(items)
        names = {item.product_id: item.product_name for item in invoice.items}

        exceeded = [
            names[product_id]
            for product_id, qty in requested.items()
            if already.get(product_id, Decimal("0")) + qty > invoiced[product_id]
        ]
        if exceeded:
            raise CreditLimitExceededError(exceeded)

        # Precio y descuento se acreditan tal como se facturaron
        invoiced_terms = {}
        for item in invoice.items:
            invoiced_terms.setdefault(item.product_id, set()).add((money(item.price), money(item.discount)))
        mismatched = [
            names[item.product_id]
            for item in items
            if (money(item.price), money(item.discount)) not in invoiced_terms[item.product_id]
        ]
        if mismatched:
            raise ValidationError(
                "El precio o descuento acreditado no coincide con la factura para: " + ", ".join(mismatched)
            )

    def _check_credited_total(self, invoice: Invoice, credit_note: CreditNote) -> None:
        others = sum(
            (money(cn.total) for cn in invoice.credit_notes if cn.id != credit_note.id),
            Decimal("0"),
        )
        ensure_within_invoice_total(invoice.total, others + credit_note.total)

    def _replace_items(self, credit_note: CreditNote, invoice: Invoice, items: List[LineItemCreate]) -> None:
        names = {item.product_id: item.product_name for item in invoice.items}
        line_totals = []
        for position, item in enumerate(items):
            subtotal, total = calculate_line_totals(item.quantity, item.price, item.discount)
            credit_note.items.append(CreditNoteItem(
                position=position,
                product_id=item.product_id,
                product_name=item.product_name or names[item.product_id],
                quantity=quantity(item.quantity),
                price=money(item.price),
                discount=money(item.discount),
                subtotal=subtotal,
                total=total,
            ))
            line_totals.append(total)

        # El descuento general de la factura también reduce lo acreditado
        factor = Decimal("1") - to_decimal(invoice.discount) / Decimal("100")
        discounted = [total * factor for total in line_totals]
        credit_note.subtotal = money(sum(discounted, Decimal("0")))
        credit_note.tax = proportional_tax(discounted, invoice.subtotal, invoice.tax)
        credit_note.total = money(credit_note.subtotal + credit_note.tax)

    def _stock_items(self, credit_note: CreditNote) -> List[StockItem]:
        return [StockItem(i.product_id, i.quantity, i.product_name) for i in credit_note.items]

    def _movement(self, credit_note: CreditNote) -> MovementMeta:
        return MovementMeta(
            MovementType.ENTRADA,
            credit_note.number,
            credit_note.issue_date,
            f"Nota de Crédito {credit_note.number} - Factura {credit_note.invoice_number}",
        )

    def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = (
            self.db.query(Invoice)
            .options(
                selectinload(Invoice.items),
                selectinload(Invoice.credit_notes).selectinload(CreditNote.items),
            )
            .filter(Invoice.id == invoice_id)
            .with_for_update(of=Invoice)
            .first()
        )
        if not invoice:
            raise NotFoundError("Factura no encontrada")
        return invoice

    def _get_credit_note(self, credit_note_id: UUID) -> CreditNote:
        credit_note = (
            self.db.query(CreditNote)
            .options(selectinload(CreditNote.items))
            .filter(CreditNote.id == credit_note_id)
            .first()
        )
        if not credit_note:
            raise NotFoundError("Nota de crédito no encontrada")
        return credit_note
