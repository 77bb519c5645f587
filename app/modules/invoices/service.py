"""
Ledger de facturas: creación, edición y eliminación.

Cada operación corre en una sola transacción que abarca la asignación de
NCF y número, la validación y ajuste de stock, los movimientos de
inventario y la escritura de la factura. Cualquier fallo revierte todo,
incluida la secuencia ya asignada.
"""
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.common.cache import invalidate_views
from app.common.exceptions import NotFoundError, ValidationError
from app.common.validators import money, quantity, to_decimal
from app.core.config import settings
from app.database.database import transaction
from app.modules.clients.models import Client
from app.modules.inventory.service import StockLedger, StockItem, StockDirection, MovementMeta
from app.modules.invoices.models import Invoice, InvoiceItem, CreditNote, InvoiceStatus
from app.modules.invoices.payments import PaymentReconciler, month_range
from app.modules.invoices.schemas import InvoiceCreate, InvoiceUpdate, LineItemCreate
from app.modules.invoices.status import derive_invoice_status
from app.modules.products.models import Product, MovementType
from app.modules.sequences.service import SequenceAllocator, SequenceService, handle_sequence_conflict, number_key

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = (
    InvoiceStatus.PENDIENTE.value,
    InvoiceStatus.PARCIAL.value,
    InvoiceStatus.NOTA_CREDITO_PARCIAL.value,
)


def calculate_line_totals(qty, price, discount) -> Tuple[Decimal, Decimal]:
    """(subtotal, total) de una línea: cantidad × precio menos el descuento de línea en %"""
    subtotal = money(to_decimal(qty) * to_decimal(price))
    total = money(subtotal - subtotal * to_decimal(discount) / Decimal("100"))
    return subtotal, total


def calculate_document_totals(line_totals: Iterable[Decimal], discount, tax) -> Tuple[Decimal, Decimal]:
    """(subtotal, total): Σ líneas menos descuento general %, más impuesto"""
    gross = sum((to_decimal(t) for t in line_totals), Decimal("0"))
    subtotal = money(gross - gross * to_decimal(discount) / Decimal("100"))
    return subtotal, money(subtotal + to_decimal(tax))


def quantities_by_product(items) -> "OrderedDict[UUID, Decimal]":
    totals: "OrderedDict[UUID, Decimal]" = OrderedDict()
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, Decimal("0")) + quantity(item.quantity)
    return totals


def to_stock_items(items) -> List[StockItem]:
    return [StockItem(product_id=i.product_id, quantity=i.quantity, product_name=i.product_name) for i in items]


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db
        self.stock = StockLedger(db)
        self.reconciler = PaymentReconciler(db)

    # ===== CREATE =====

    def create_invoice(self, invoice_data: InvoiceCreate) -> Invoice:
        """
        Crear factura.

        Valida stock, asigna número interno y NCF (salvo S/C), persiste la
        factura y descuenta el inventario con movimientos SALIDA bajo el
        número de la factura.
        """
        self._validate_ncf_type(invoice_data.ncf_type)
        fiscal = invoice_data.ncf_type != settings.NO_FISCAL_TYPE
        year = invoice_data.issue_date.year

        try:
            with transaction(self.db):
                client = self._resolve_client(invoice_data.client_id)
                self.stock.validate_availability(to_stock_items(invoice_data.items))
                names = self._product_names(invoice_data.items)

                allocator = SequenceAllocator(self.db)
                number = allocator.next_document_number(settings.INVOICE_NUMBER_PREFIX, year)
                ncf = allocator.next_ncf(invoice_data.ncf_type) if fiscal else None

                invoice = Invoice(number=number, ncf=ncf, ncf_type=invoice_data.ncf_type, paid_amount=Decimal("0"))
                self._apply_header(invoice, invoice_data, client)
                self._replace_items(invoice, invoice_data.items, names)
                invoice.status = derive_invoice_status(invoice.total, 0, 0)

                self.db.add(invoice)
                self.db.flush()

                self.stock.adjust(
                    [StockItem(i.product_id, i.quantity, i.product_name) for i in invoice.items],
                    StockDirection.SUBTRACT,
                    MovementMeta(MovementType.SALIDA, number, invoice.issue_date, f"Factura {number}"),
                )
        except IntegrityError as e:
            handle_sequence_conflict(
                self.db, e,
                invoice_data.ncf_type if fiscal else None,
                number_key(settings.INVOICE_NUMBER_PREFIX, year),
            )

        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.number} created (NCF {invoice.ncf or settings.NO_FISCAL_TYPE}), total {invoice.total}")
        invalidate_views("/invoices", "/inventory")
        return invoice

    # ===== UPDATE =====

    def update_invoice(self, invoice_id: UUID, invoice_data: InvoiceUpdate) -> Invoice:
        """
        Reemplazar items y datos de la factura.

        El stock de los items anteriores se devuelve sin movimiento, se
        borran sus movimientos y se registran movimientos nuevos para los
        items actuales. Número y NCF no cambian.
        """
        with transaction(self.db):
            invoice = self._get_invoice(invoice_id, for_update=True)
            client = self._resolve_client(invoice_data.client_id)
            self._check_credited_quantities(invoice, invoice_data.items)

            old_items = [StockItem(i.product_id, i.quantity, i.product_name) for i in invoice.items]
            self.stock.adjust(old_items, StockDirection.ADD)
            self.stock.remove_movements(invoice.number)

            self.stock.validate_availability(to_stock_items(invoice_data.items))
            names = self._product_names(invoice_data.items)

            self._apply_header(invoice, invoice_data, client)
            invoice.items.clear()
            self.db.flush()
            self._replace_items(invoice, invoice_data.items, names)
            self.db.flush()

            self.stock.adjust(
                [StockItem(i.product_id, i.quantity, i.product_name) for i in invoice.items],
                StockDirection.SUBTRACT,
                MovementMeta(
                    MovementType.SALIDA, invoice.number, invoice.issue_date,
                    f"Factura {invoice.number} (Editada)",
                ),
            )
            self.reconciler.recompute_invoice(invoice)

        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.number} updated, total {invoice.total}, status {invoice.status}")
        invalidate_views("/invoices", "/inventory")
        return invoice

    # ===== DELETE =====

    def delete_invoice(self, invoice_id: UUID) -> str:
        """
        Eliminar factura con limpieza en cascada, en orden:
        stock de items, movimientos, notas de crédito (re-descontando su
        stock), pagos y la factura. Luego resincroniza las secuencias.
        """
        with transaction(self.db):
            invoice = self._get_invoice(invoice_id, for_update=True)
            number = invoice.number

            self.stock.adjust([StockItem(i.product_id, i.quantity, i.product_name) for i in invoice.items], StockDirection.ADD)
            self.stock.remove_movements(number)

            for credit_note in list(invoice.credit_notes):
                self.stock.adjust(
                    [StockItem(i.product_id, i.quantity, i.product_name) for i in credit_note.items],
                    StockDirection.SUBTRACT,
                )
                self.stock.remove_movements(credit_note.number)
                self.db.delete(credit_note)

            for payment in list(invoice.payments):
                self.db.delete(payment)

            self.db.flush()
            self.db.expire(invoice, ["payments", "credit_notes"])
            self.db.delete(invoice)

        logger.info(f"Invoice {number} deleted with its payments and credit notes")
        self._resync_after_delete()
        invalidate_views("/invoices", "/inventory", "/payments")
        return f"Factura {number} eliminada correctamente"

    # ===== READ =====

    def get_invoice_by_id(self, invoice_id: UUID) -> Invoice:
        return self._get_invoice(invoice_id)

    def get_invoices(self, month: Optional[int] = None, year: Optional[int] = None) -> dict:
        """
        Sin período: todas las facturas, más recientes primero.
        Con período: las emitidas en el mes más las que siguen con saldo pendiente.
        """
        query = self.db.query(Invoice)
        if month and year:
            start, end = month_range(month, year)
            query = query.filter(
                or_(
                    and_(Invoice.issue_date >= start, Invoice.issue_date < end),
                    Invoice.status.in_(OUTSTANDING_STATUSES),
                )
            )
        invoices = query.order_by(Invoice.issue_date.desc(), Invoice.created_at.desc()).all()
        return {"invoices": invoices, "total": len(invoices)}

    # ===== HELPERS =====

    def _get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Invoice:
        query = self.db.query(Invoice).options(
            selectinload(Invoice.items),
            selectinload(Invoice.payments),
            selectinload(Invoice.credit_notes).selectinload(CreditNote.items),
        ).filter(Invoice.id == invoice_id)
        if for_update:
            query = query.with_for_update(of=Invoice)
        invoice = query.first()
        if not invoice:
            raise NotFoundError("Factura no encontrada")
        return invoice

    def _validate_ncf_type(self, ncf_type: str) -> None:
        if ncf_type != settings.NO_FISCAL_TYPE and ncf_type not in settings.NCF_TYPES:
            raise ValidationError(f"Tipo de comprobante inválido: {ncf_type}")

    def _resolve_client(self, client_id: Optional[UUID]) -> Optional[Client]:
        if client_id is None:
            return None
        client = self.db.get(Client, client_id)
        if not client:
            raise NotFoundError("Cliente no encontrado")
        return client

    def _apply_header(self, invoice: Invoice, data: InvoiceCreate, client: Optional[Client]) -> None:
        # Snapshot del cliente: lo enviado por el formulario tiene prioridad
        invoice.client_id = client.id if client else None
        invoice.client_name = data.client_name or (client.name if client else None)
        invoice.client_rnc = data.client_rnc or (client.rnc if client else None)
        invoice.client_address = data.client_address or (client.address if client else None)
        invoice.sold_by = data.sold_by
        invoice.seller_email = data.seller_email
        invoice.payment_terms = data.payment_terms
        invoice.issue_date = data.issue_date
        invoice.due_date = data.due_date or data.issue_date
        invoice.discount = money(data.discount)
        invoice.tax = money(data.tax)
        invoice.notes = data.notes

    def _replace_items(self, invoice: Invoice, items: List[LineItemCreate], names: Dict[UUID, str]) -> None:
        line_totals = []
        for position, item in enumerate(items):
            subtotal, total = calculate_line_totals(item.quantity, item.price, item.discount)
            invoice.items.append(InvoiceItem(
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

        invoice.subtotal, invoice.total = calculate_document_totals(line_totals, invoice.discount, invoice.tax)

    def _product_names(self, items) -> Dict[UUID, str]:
        ids = list({item.product_id for item in items})
        rows = self.db.query(Product.id, Product.name).filter(Product.id.in_(ids)).all()
        names = {row.id: row.name for row in rows}
        missing = [str(pid) for pid in ids if pid not in names]
        if missing:
            raise NotFoundError(f"Producto(s) no encontrado(s): {', '.join(missing)}")
        return names

    def _check_credited_quantities(self, invoice: Invoice, new_items: List[LineItemCreate]) -> None:
        """Los items nuevos deben seguir cubriendo lo ya acreditado en notas de crédito"""
        if not invoice.credit_notes:
            return
        credited = quantities_by_product(
            item for credit_note in invoice.credit_notes for item in credit_note.items
        )
        invoiced = quantities_by_product(new_items)
        short = [str(pid) for pid, qty in credited.items() if invoiced.get(pid, Decimal("0")) < qty]
        if short:
            raise ValidationError(
                "La factura tiene notas de crédito por cantidades mayores a los nuevos items "
                f"(productos: {', '.join(short)})"
            )

    def _resync_after_delete(self) -> None:
        try:
            SequenceService(self.db).sync_sequences()
        except Exception as e:
            # La eliminación ya está confirmada; el barrido periódico vuelve a intentarlo
            logger.error(f"Sequence sync after invoice delete failed: {str(e)}", exc_info=True)
