"""
Tests para el ledger de facturación

Cubren:
- Cálculo de totales y derivación de estado
- Creación, edición y eliminación de facturas con su efecto en inventario
- Pagos, notas de crédito y conciliación de saldos
- Ventas concurrentes sobre el mismo producto
- Respuestas uniformes de los endpoints
"""

import threading
import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from app.common.cache import register_invalidation_listener
from app.common.exceptions import (
    InsufficientStockError, NotFoundError, ValidationError, OverpaymentError, CreditLimitExceededError
)
from app.modules.invoices.credit_notes import CreditNoteService, ensure_within_invoice_total, proportional_tax
from app.modules.invoices.models import Invoice, Payment, CreditNote, InvoiceStatus
from app.modules.invoices.payments import PaymentService, PaymentReconciler
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, PaymentCreate, PaymentUpdate, CreditNoteCreate, CreditNoteUpdate
)
from app.modules.invoices.service import InvoiceService, calculate_line_totals, calculate_document_totals
from app.modules.invoices.status import derive_invoice_status
from app.modules.products.models import InventoryMovement


# ===== HELPERS =====

def line(product, quantity="1", price="100.00", discount="0"):
    return {"product_id": product.id, "quantity": quantity, "price": price, "discount": discount}


def invoice_input(*items, tax="18.00", ncf_type="B01", schema=InvoiceCreate, **extra):
    data = {"client_name": "Cliente Contado", "ncf_type": ncf_type, "items": list(items), "tax": tax}
    data.update(extra)
    return schema(**data)


def pay(db_session, invoice, amount, method="Efectivo"):
    return PaymentService(db_session).create_payment(
        PaymentCreate(invoice_id=invoice.id, amount=amount, method=method)
    )


def credit(db_session, invoice, *items, reason="Devolución"):
    return CreditNoteService(db_session).create_credit_note(
        CreditNoteCreate(invoice_id=invoice.id, reason=reason, items=list(items))
    )


def stock_of(db_session, product):
    db_session.refresh(product)
    return product.stock


def movement_count(db_session, reference):
    return db_session.query(InventoryMovement).filter(InventoryMovement.reference == reference).count()


def assert_paid_amount_matches_records(db_session):
    db_session.expire_all()
    for invoice in db_session.query(Invoice).all():
        payments = sum((p.amount for p in db_session.query(Payment).filter_by(invoice_id=invoice.id)), Decimal("0"))
        credit_notes = sum((c.total for c in db_session.query(CreditNote).filter_by(invoice_id=invoice.id)), Decimal("0"))
        assert invoice.paid_amount == payments + credit_notes


# ===== CÁLCULOS Y ESTADO =====

class TestCalculations:

    def test_line_totals_apply_line_discount(self):
        assert calculate_line_totals(Decimal("3"), Decimal("10.00"), Decimal("10")) == (Decimal("30.00"), Decimal("27.00"))

    def test_document_totals_discount_then_tax(self):
        subtotal, total = calculate_document_totals([Decimal("60.00"), Decimal("40.00")], Decimal("10"), Decimal("16.20"))
        assert subtotal == Decimal("90.00")
        assert total == Decimal("106.20")

    def test_proportional_tax(self):
        assert proportional_tax([Decimal("100.00")], Decimal("100.00"), Decimal("18.00")) == Decimal("18.00")
        assert proportional_tax([Decimal("25.00"), Decimal("25.00")], Decimal("100.00"), Decimal("18.00")) == Decimal("9.00")
        assert proportional_tax([Decimal("10.00")], Decimal("0"), Decimal("18.00")) == Decimal("0.00")


class TestDeriveStatus:

    @pytest.mark.parametrize("payments,credit_notes,expected", [
        ("0", "0", "Pendiente"),
        ("50", "0", "Parcial"),
        ("118", "0", "Pagada"),
        ("117.995", "0", "Pagada"),
        ("50", "20", "Nota de Crédito Parcial"),
        ("0", "59", "Nota de Crédito Parcial"),
        ("50", "68", "Pagada"),
        ("0", "118", "Anulada"),
    ])
    def test_rules(self, payments, credit_notes, expected):
        assert derive_invoice_status(Decimal("118"), Decimal(payments), Decimal(credit_notes)) == expected


# ===== CREAR =====

class TestCreateInvoice:

    def test_totals_numbers_and_stock(self, db_session, sample_product, sample_client):
        invoice = InvoiceService(db_session).create_invoice(
            invoice_input(line(sample_product, quantity="2", price="50.00"), client_id=sample_client.id, client_name=None)
        )

        assert invoice.subtotal == Decimal("100.00")
        assert invoice.tax == Decimal("18.00")
        assert invoice.total == Decimal("118.00")
        assert invoice.paid_amount == Decimal("0")
        assert invoice.status == InvoiceStatus.PENDIENTE.value
        assert invoice.number == f"FAC-{date.today().year}-001"
        assert invoice.ncf == "B0100000001"

        # Snapshot del cliente
        assert invoice.client_name == sample_client.name
        assert invoice.client_rnc == "131234567"

        assert stock_of(db_session, sample_product) == Decimal("8")
        assert movement_count(db_session, invoice.number) == 1

    def test_consecutive_invoices_get_consecutive_numbers(self, db_session, sample_product):
        service = InvoiceService(db_session)
        first = service.create_invoice(invoice_input(line(sample_product)))
        second = service.create_invoice(invoice_input(line(sample_product)))
        assert first.ncf == "B0100000001"
        assert second.ncf == "B0100000002"
        assert second.number.endswith("-002")

    def test_insufficient_stock_writes_nothing(self, db_session, make_product):
        cement = make_product(name="Cemento", stock="1")
        paint = make_product(name="Pintura", stock="1")

        with pytest.raises(InsufficientStockError) as exc_info:
            InvoiceService(db_session).create_invoice(
                invoice_input(line(cement, quantity="2"), line(paint, quantity="3"))
            )

        assert len(exc_info.value.shortages) == 2
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(InventoryMovement).count() == 0
        assert stock_of(db_session, cement) == Decimal("1")

    def test_invalid_ncf_type(self, db_session, sample_product):
        with pytest.raises(ValidationError):
            InvoiceService(db_session).create_invoice(invoice_input(line(sample_product), ncf_type="X99"))

    def test_unknown_client(self, db_session, sample_product):
        with pytest.raises(NotFoundError):
            InvoiceService(db_session).create_invoice(invoice_input(line(sample_product), client_id=uuid4()))

    def test_due_date_defaults_to_issue_date(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        assert invoice.due_date == invoice.issue_date

    def test_overdue_is_display_only(self, db_session, sample_product):
        issued = date.today() - timedelta(days=40)
        invoice = InvoiceService(db_session).create_invoice(
            invoice_input(line(sample_product), issue_date=issued, due_date=issued + timedelta(days=30))
        )
        assert invoice.status == InvoiceStatus.PENDIENTE.value
        assert invoice.display_status == InvoiceStatus.VENCIDA.value

    def test_invalidates_views_after_commit(self, db_session, sample_product):
        seen = []
        register_invalidation_listener(seen.append)
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product, quantity="2")))
        assert ("/invoices", "/inventory") in seen

        seen.clear()
        payment = pay(db_session, invoice, "50.00")
        assert seen == [("/invoices", "/payments")]

        seen.clear()
        PaymentService(db_session).update_payment(payment.id, PaymentUpdate(amount="60.00"))
        PaymentService(db_session).delete_payment(payment.id)
        assert seen == [("/invoices", "/payments"), ("/invoices", "/payments")]

        seen.clear()
        credit(db_session, invoice, line(sample_product))
        assert seen == [("/invoices", "/inventory", "/payments")]

    def test_reconcile_invalidates_only_when_something_changed(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        seen = []
        register_invalidation_listener(seen.append)

        PaymentReconciler(db_session).reconcile_all()
        assert seen == []

        db_session.refresh(invoice)
        invoice.paid_amount = Decimal("7")
        db_session.commit()
        PaymentReconciler(db_session).reconcile_all()
        assert seen == [("/invoices", "/payments")]


# ===== EDITAR =====

class TestUpdateInvoice:

    def test_items_replaced_and_movements_regenerated(self, db_session, make_product):
        cement = make_product(name="Cemento", stock="10")
        paint = make_product(name="Pintura", stock="10")
        sand = make_product(name="Arena", stock="10")
        service = InvoiceService(db_session)

        invoice = service.create_invoice(invoice_input(line(cement, quantity="2"), line(paint, quantity="1")))
        number, ncf = invoice.number, invoice.ncf

        updated = service.update_invoice(invoice.id, invoice_input(
            line(cement, quantity="3"), line(paint, quantity="1"), line(sand, quantity="4"),
            schema=InvoiceUpdate,
        ))

        assert updated.number == number
        assert updated.ncf == ncf
        assert len(updated.items) == 3
        assert movement_count(db_session, number) == 3
        assert stock_of(db_session, cement) == Decimal("7")
        assert stock_of(db_session, paint) == Decimal("9")
        assert stock_of(db_session, sand) == Decimal("6")
        assert updated.total == Decimal("818.00")

        # Editar de nuevo con menos items
        service.update_invoice(invoice.id, invoice_input(line(sand, quantity="1"), schema=InvoiceUpdate))
        assert movement_count(db_session, number) == 1
        assert stock_of(db_session, cement) == Decimal("10")
        assert stock_of(db_session, sand) == Decimal("9")

    def test_edit_can_reuse_stock_freed_by_old_items(self, db_session, make_product):
        product = make_product(stock="5")
        service = InvoiceService(db_session)
        invoice = service.create_invoice(invoice_input(line(product, quantity="5")))

        service.update_invoice(invoice.id, invoice_input(line(product, quantity="4"), schema=InvoiceUpdate))
        assert stock_of(db_session, product) == Decimal("1")

    def test_edit_with_insufficient_stock_rolls_back(self, db_session, make_product):
        product = make_product(stock="5")
        service = InvoiceService(db_session)
        invoice = service.create_invoice(invoice_input(line(product, quantity="2")))

        with pytest.raises(InsufficientStockError):
            service.update_invoice(invoice.id, invoice_input(line(product, quantity="6"), schema=InvoiceUpdate))

        assert stock_of(db_session, product) == Decimal("3")
        assert movement_count(db_session, invoice.number) == 1

    def test_status_recomputed_after_edit(self, db_session, sample_product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(invoice_input(line(sample_product)))
        pay(db_session, invoice, "59.00")

        updated = service.update_invoice(invoice.id, invoice_input(line(sample_product, price="50.00"), tax="9.00", schema=InvoiceUpdate))
        assert updated.total == Decimal("59.00")
        assert updated.status == InvoiceStatus.PAGADA.value

    def test_edit_cannot_drop_below_credited_quantity(self, db_session, sample_product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(invoice_input(line(sample_product, quantity="3")))
        credit(db_session, invoice, line(sample_product, quantity="2"))

        with pytest.raises(ValidationError):
            service.update_invoice(invoice.id, invoice_input(line(sample_product, quantity="1"), schema=InvoiceUpdate))

    def test_missing_invoice(self, db_session, sample_product):
        with pytest.raises(NotFoundError):
            InvoiceService(db_session).update_invoice(uuid4(), invoice_input(line(sample_product), schema=InvoiceUpdate))


# ===== ELIMINAR =====

class TestDeleteInvoice:

    def test_create_then_delete_restores_stock(self, db_session, make_product):
        cement = make_product(stock="10")
        paint = make_product(stock="4")
        service = InvoiceService(db_session)

        invoice = service.create_invoice(invoice_input(line(cement, quantity="3"), line(paint, quantity="4")))
        number = invoice.number
        service.delete_invoice(invoice.id)

        assert stock_of(db_session, cement) == Decimal("10")
        assert stock_of(db_session, paint) == Decimal("4")
        assert movement_count(db_session, number) == 0
        assert db_session.query(Invoice).count() == 0

    def test_cascades_payments_and_credit_notes(self, db_session, make_product):
        cement = make_product(name="Cemento", stock="10", price="50.00")
        paint = make_product(name="Pintura", stock="10", price="50.00")
        service = InvoiceService(db_session)

        invoice = service.create_invoice(invoice_input(line(cement, price="50.00"), line(paint, price="50.00")))
        payment = pay(db_session, invoice, "50.00")
        credit_note = credit(db_session, invoice, line(paint, price="50.00"))
        number = invoice.number
        payment_id, credit_note_id, credit_note_number = payment.id, credit_note.id, credit_note.number

        assert stock_of(db_session, paint) == Decimal("10")  # vendido 1, acreditado 1

        message = service.delete_invoice(invoice.id)

        assert number in message
        assert db_session.get(Payment, payment_id) is None
        assert db_session.get(CreditNote, credit_note_id) is None
        assert movement_count(db_session, credit_note_number) == 0
        assert stock_of(db_session, cement) == Decimal("10")
        assert stock_of(db_session, paint) == Decimal("10")

    def test_delete_resyncs_sequences(self, db_session, sample_product):
        from app.modules.sequences.models import NcfSequence

        service = InvoiceService(db_session)
        service.create_invoice(invoice_input(line(sample_product)))
        last = service.create_invoice(invoice_input(line(sample_product)))
        service.delete_invoice(last.id)

        db_session.expire_all()
        counter = db_session.query(NcfSequence).filter_by(key="B01").one()
        assert counter.current_value == 1

    def test_missing_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            InvoiceService(db_session).delete_invoice(uuid4())


# ===== LECTURAS =====

class TestReadInvoices:

    def test_period_includes_outstanding_from_other_months(self, db_session, make_product):
        product = make_product(stock="100")
        service = InvoiceService(db_session)
        old_day = date(date.today().year - 1, 1, 10)

        old_paid = service.create_invoice(invoice_input(line(product), issue_date=old_day))
        pay(db_session, old_paid, "118.00")
        old_pending = service.create_invoice(invoice_input(line(product), issue_date=old_day))
        current = service.create_invoice(invoice_input(line(product)))

        result = service.get_invoices(date.today().month, date.today().year)
        ids = {inv.id for inv in result["invoices"]}
        assert ids == {old_pending.id, current.id}

        everything = service.get_invoices()
        assert everything["total"] == 3
        assert everything["invoices"][0].id == current.id

    def test_get_by_id(self, db_session, sample_product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(invoice_input(line(sample_product)))
        assert service.get_invoice_by_id(invoice.id).number == invoice.number
        with pytest.raises(NotFoundError):
            service.get_invoice_by_id(uuid4())


# ===== PAGOS =====

class TestPayments:

    def test_partial_then_full_payment(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))

        pay(db_session, invoice, "50.00")
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PARCIAL.value
        assert invoice.paid_amount == Decimal("50.00")

        pay(db_session, invoice, "68.00", method="Transferencia")
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAGADA.value
        assert invoice.paid_amount == Decimal("118.00")
        assert invoice.balance_due == Decimal("0")

    def test_overpayment_rejected(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        pay(db_session, invoice, "100.00")

        with pytest.raises(OverpaymentError):
            pay(db_session, invoice, "18.02")
        # Dentro de la tolerancia de 0.01
        pay(db_session, invoice, "18.01")

    def test_non_positive_amount_rejected(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        with pytest.raises(ValidationError):
            pay(db_session, invoice, "0")

    def test_missing_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            PaymentService(db_session).create_payment(PaymentCreate(invoice_id=uuid4(), amount="10", method="Efectivo"))

    def test_voided_invoice_rejects_payments(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        credit(db_session, invoice, line(sample_product))
        with pytest.raises(ValidationError):
            pay(db_session, invoice, "1.00")

    def test_update_payment_recomputes(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        payment = pay(db_session, invoice, "50.00")
        service = PaymentService(db_session)

        service.update_payment(payment.id, PaymentUpdate(amount="118.00", reference="TRX-881"))
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAGADA.value

        with pytest.raises(OverpaymentError):
            service.update_payment(payment.id, PaymentUpdate(amount="119.00"))

        updated = service.update_payment(payment.id, PaymentUpdate(method="Cheque"))
        assert updated.method == "Cheque"
        assert updated.amount == Decimal("118.00")
        assert updated.reference == "TRX-881"

    def test_delete_payment_reverts_status(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        payment = pay(db_session, invoice, "50.00")

        PaymentService(db_session).delete_payment(payment.id)
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PENDIENTE.value
        assert invoice.paid_amount == Decimal("0")

    def test_list_payments(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        pay(db_session, invoice, "10.00")
        pay(db_session, invoice, "20.00")
        service = PaymentService(db_session)

        assert len(service.get_payments_by_invoice(invoice.id)) == 2
        assert len(service.get_payments(date.today().month, date.today().year)) == 2
        assert len(service.get_payments()) == 2


# ===== NOTAS DE CRÉDITO =====

class TestCreditNotes:

    def test_full_credit_voids_invoice(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        credit_note = credit(db_session, invoice, line(sample_product))

        assert credit_note.subtotal == Decimal("100.00")
        assert credit_note.tax == Decimal("18.00")
        assert credit_note.total == Decimal("118.00")
        assert credit_note.ncf == "B0400000001"
        assert credit_note.number == f"NC-{date.today().year}-001"
        assert credit_note.invoice_number == invoice.number

        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.ANULADA.value
        assert invoice.paid_amount == Decimal("118.00")

    def test_credited_quantity_returns_to_stock(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product, quantity="3")))
        assert stock_of(db_session, sample_product) == Decimal("7")

        credit_note = credit(db_session, invoice, line(sample_product, quantity="2"))
        assert stock_of(db_session, sample_product) == Decimal("9")
        assert movement_count(db_session, credit_note.number) == 1

    def test_partial_credit_with_payment(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product, quantity="2", price="50.00")))
        pay(db_session, invoice, "20.00")
        credit(db_session, invoice, line(sample_product, price="50.00"))

        db_session.refresh(invoice)
        assert invoice.paid_amount == Decimal("79.00")
        assert invoice.status == InvoiceStatus.NOTA_CREDITO_PARCIAL.value

    def test_credit_limit_across_notes(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product, quantity="2")))
        credit(db_session, invoice, line(sample_product, quantity="1"))
        stock_before = stock_of(db_session, sample_product)

        with pytest.raises(CreditLimitExceededError) as exc_info:
            credit(db_session, invoice, line(sample_product, quantity="2"))

        assert sample_product.name in exc_info.value.message
        assert stock_of(db_session, sample_product) == stock_before
        assert db_session.query(CreditNote).count() == 1

    def test_product_not_in_invoice(self, db_session, make_product):
        sold = make_product(stock="5")
        other = make_product(stock="5")
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sold)))
        with pytest.raises(ValidationError):
            credit(db_session, invoice, line(other))

    def test_price_must_match_invoice(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))

        with pytest.raises(ValidationError):
            credit(db_session, invoice, line(sample_product, price="500.00"))
        with pytest.raises(ValidationError):
            credit(db_session, invoice, line(sample_product, discount="5"))

        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PENDIENTE.value
        assert invoice.paid_amount == Decimal("0")
        assert stock_of(db_session, sample_product) == Decimal("9")
        assert db_session.query(CreditNote).count() == 0

    def test_full_credit_of_discounted_invoice(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(
            invoice_input(line(sample_product), discount="10", tax="16.20")
        )
        assert invoice.total == Decimal("106.20")

        credit_note = credit(db_session, invoice, line(sample_product))
        assert credit_note.subtotal == Decimal("90.00")
        assert credit_note.tax == Decimal("16.20")
        assert credit_note.total == Decimal("106.20")

        db_session.refresh(invoice)
        assert invoice.paid_amount == Decimal("106.20")
        assert invoice.balance_due == Decimal("0")
        assert invoice.status == InvoiceStatus.ANULADA.value

    def test_credited_total_bounded_by_invoice_total(self):
        ensure_within_invoice_total(Decimal("118.00"), Decimal("118.01"))
        with pytest.raises(ValidationError):
            ensure_within_invoice_total(Decimal("118.00"), Decimal("118.02"))

    def test_update_credit_note(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product, quantity="2", price="50.00")))
        credit_note = credit(db_session, invoice, line(sample_product, price="50.00"))
        service = CreditNoteService(db_session)

        updated = service.update_credit_note(
            credit_note.id,
            CreditNoteUpdate(reason="Devolución total", items=[line(sample_product, quantity="2", price="50.00")]),
        )
        assert updated.number == credit_note.number
        assert updated.total == Decimal("118.00")
        assert stock_of(db_session, sample_product) == Decimal("10")
        assert movement_count(db_session, credit_note.number) == 1

        with pytest.raises(CreditLimitExceededError):
            service.update_credit_note(
                credit_note.id,
                CreditNoteUpdate(reason="Exceso", items=[line(sample_product, quantity="3", price="50.00")]),
            )

        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.ANULADA.value

    def test_delete_credit_note(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        credit_note = credit(db_session, invoice, line(sample_product))
        number = credit_note.number

        CreditNoteService(db_session).delete_credit_note(credit_note.id)

        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PENDIENTE.value
        assert invoice.paid_amount == Decimal("0")
        assert stock_of(db_session, sample_product) == Decimal("9")
        assert movement_count(db_session, number) == 0

    def test_reads(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product, quantity="2")))
        credit_note = credit(db_session, invoice, line(sample_product))
        service = CreditNoteService(db_session)

        assert [c.id for c in service.get_credit_notes_by_invoice(invoice.id)] == [credit_note.id]
        assert service.get_credit_note_by_id(credit_note.id).items[0].quantity == Decimal("1")
        assert len(service.get_credit_notes(date.today().month, date.today().year)) == 1
        with pytest.raises(NotFoundError):
            service.get_credit_note_by_id(uuid4())


# ===== CONCILIACIÓN =====

class TestReconciliation:

    def test_paid_amount_matches_records_after_mixed_operations(self, db_session, make_product):
        product = make_product(stock="50")
        service = InvoiceService(db_session)
        first = service.create_invoice(invoice_input(line(product, quantity="2", price="50.00")))
        second = service.create_invoice(invoice_input(line(product, quantity="1")))

        payment = pay(db_session, first, "30.00")
        credit(db_session, first, line(product, price="50.00"))
        pay(db_session, second, "118.00")
        PaymentService(db_session).update_payment(payment.id, PaymentUpdate(amount="40.00"))

        assert_paid_amount_matches_records(db_session)
        PaymentReconciler(db_session).reconcile_all()
        assert_paid_amount_matches_records(db_session)

    def test_repairs_drift_and_is_idempotent(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        pay(db_session, invoice, "50.00")

        # Simular un caché desincronizado
        db_session.refresh(invoice)
        invoice.paid_amount = Decimal("0")
        invoice.status = InvoiceStatus.PAGADA.value
        db_session.commit()

        reconciler = PaymentReconciler(db_session)
        assert reconciler.reconcile_all() == {"invoices_checked": 1, "invoices_updated": 1}

        db_session.refresh(invoice)
        assert invoice.paid_amount == Decimal("50.00")
        assert invoice.status == InvoiceStatus.PARCIAL.value

        assert reconciler.reconcile_all() == {"invoices_checked": 1, "invoices_updated": 0}

    def test_celery_task_runs_sweep(self, db_session, session_factory, sample_product, monkeypatch):
        from app.modules.invoices import tasks

        invoice = InvoiceService(db_session).create_invoice(invoice_input(line(sample_product)))
        db_session.refresh(invoice)
        invoice.paid_amount = Decimal("5")
        db_session.commit()

        monkeypatch.setattr(tasks, "SessionLocal", session_factory)
        result = tasks.reconcile_invoice_balances()

        assert result["status"] == "completed"
        assert result["invoices_updated"] == 1


# ===== CONCURRENCIA =====

class TestConcurrentSales:

    def test_only_one_sale_of_last_units(self, session_factory, make_product):
        product = make_product(stock="5")
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def sell():
            db = session_factory()
            try:
                barrier.wait()
                InvoiceService(db).create_invoice(invoice_input(line(product, quantity="5")))
                result = "ok"
            except InsufficientStockError:
                result = "insufficient"
            except Exception as e:
                result = f"error: {e!r}"
            finally:
                db.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=sell) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ["insufficient", "ok"]

        db = session_factory()
        try:
            assert db.get(type(product), product.id).stock == Decimal("0")
            assert db.query(Invoice).count() == 1
        finally:
            db.close()


# ===== ENDPOINTS =====

class TestInvoiceEndpoints:

    def invoice_json(self, product, quantity="1"):
        return {
            "client_name": "Cliente Contado",
            "ncf_type": "b01",
            "tax": "18.00",
            "items": [{"product_id": str(product.id), "quantity": quantity, "price": "100.00"}],
        }

    def test_create_returns_envelope(self, client, sample_product):
        response = client.post("/invoices/", json=self.invoice_json(sample_product))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["invoice"]["ncf"] == "B0100000001"
        assert Decimal(body["invoice"]["total"]) == Decimal("118.00")
        assert len(body["invoice"]["items"]) == 1

    def test_business_failure_is_not_an_http_error(self, client, sample_product):
        response = client.post("/invoices/", json=self.invoice_json(sample_product, quantity="50"))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["retryable"] is False
        assert "Stock insuficiente" in body["message"]
        assert body["invoice"] is None

    def test_sequence_conflict_is_retryable(self, client, sample_product):
        client.post("/invoices/", json=self.invoice_json(sample_product))
        client.put("/sequences/B01", json={"current_value": 0})

        body = client.post("/invoices/", json=self.invoice_json(sample_product)).json()
        assert body["success"] is False
        assert body["retryable"] is True

        body = client.post("/invoices/", json=self.invoice_json(sample_product)).json()
        assert body["success"] is True
        assert body["invoice"]["ncf"] == "B0100000002"

    def test_request_validation_is_422(self, client, sample_product):
        payload = self.invoice_json(sample_product)
        payload["items"] = []
        assert client.post("/invoices/", json=payload).status_code == 422

    def test_full_flow(self, client, sample_product):
        invoice = client.post("/invoices/", json=self.invoice_json(sample_product)).json()["invoice"]

        body = client.post("/payments/", json={"invoice_id": invoice["id"], "amount": "50.00", "method": "Efectivo"}).json()
        assert body["success"] is True
        assert body["payment"]["invoice_number"] == invoice["number"]

        detail = client.get(f"/invoices/{invoice['id']}").json()
        assert detail["status"] == "Parcial"
        assert detail["payment_ids"] == [body["payment"]["id"]]

        body = client.post("/payments/", json={"invoice_id": invoice["id"], "amount": "500.00", "method": "Efectivo"}).json()
        assert body["success"] is False
        assert "excede" in body["message"]

        payments = client.get(f"/invoices/{invoice['id']}/payments").json()
        assert len(payments) == 1

        listing = client.get("/invoices/").json()
        assert listing["total"] == 1

        body = client.delete(f"/invoices/{invoice['id']}").json()
        assert body["success"] is True
        assert client.get(f"/invoices/{invoice['id']}").status_code == 404

    def test_credit_note_endpoints(self, client, sample_product):
        invoice = client.post("/invoices/", json=self.invoice_json(sample_product, quantity="2")).json()["invoice"]
        item = {"product_id": str(sample_product.id), "quantity": "1", "price": "100.00"}

        body = client.post("/credit-notes/", json={"invoice_id": invoice["id"], "reason": "Devolución", "items": [item]}).json()
        assert body["success"] is True
        credit_note = body["credit_note"]
        assert Decimal(credit_note["tax"]) == Decimal("9.00")

        assert client.get(f"/credit-notes/{credit_note['id']}").status_code == 200
        assert len(client.get(f"/invoices/{invoice['id']}/credit-notes").json()) == 1

        too_much = dict(item, quantity="2")
        body = client.put(f"/credit-notes/{credit_note['id']}", json={"reason": "x", "items": [too_much, item]}).json()
        assert body["success"] is False

        body = client.delete(f"/credit-notes/{credit_note['id']}").json()
        assert body["success"] is True
        assert client.get("/credit-notes/").json() == []

    def test_missing_entities(self, client):
        missing = str(uuid4())
        assert client.get(f"/invoices/{missing}").status_code == 404
        body = client.delete(f"/invoices/{missing}").json()
        assert body == {"success": False, "message": "Factura no encontrada", "retryable": False}
        assert client.delete(f"/payments/{missing}").json()["success"] is False

    def test_reconcile_endpoint(self, client, sample_product):
        client.post("/invoices/", json=self.invoice_json(sample_product))
        body = client.post("/invoices/reconcile").json()
        assert body["success"] is True
        assert body["summary"] == {"invoices_checked": 1, "invoices_updated": 0}

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
