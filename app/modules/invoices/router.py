from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from app.common.exceptions import LedgerError
from app.common.results import run_ledger_operation, to_http_exception
from app.database.database import get_db
from app.modules.invoices.service import InvoiceService
from app.modules.invoices.payments import PaymentService, PaymentReconciler
from app.modules.invoices.credit_notes import CreditNoteService
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceDetail, InvoiceListResult,
    PaymentCreate, PaymentUpdate, PaymentOut,
    CreditNoteCreate, CreditNoteUpdate, CreditNoteOut,
    OperationResult, InvoiceResult, PaymentResult, CreditNoteResult, ReconciliationResult,
)

# Router principal del módulo de facturas
router = APIRouter(prefix="/invoices", tags=["Invoices"])
payments_router = APIRouter(prefix="/payments", tags=["Payments"])
credit_notes_router = APIRouter(prefix="/credit-notes", tags=["Credit Notes"])


# ===== FACTURAS =====

@router.post("/", response_model=InvoiceResult)
def create_invoice(invoice_data: InvoiceCreate, db: Session = Depends(get_db)):
    """
    Crear una nueva factura

    Valida stock, asigna número y NCF y descuenta el inventario en una sola
    transacción. Los errores de negocio se devuelven como `success: false`;
    `retryable: true` indica un conflicto de secuencia que puede reenviarse.
    """
    service = InvoiceService(db)
    return run_ledger_operation(
        lambda: InvoiceDetail.model_validate(service.create_invoice(invoice_data)),
        "invoice",
        "Error al crear la factura",
    )


@router.get("/", response_model=InvoiceListResult)
def list_invoices(
    month: Optional[int] = Query(None, ge=1, le=12, description="Mes (1-12)"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db)
):
    """
    Listar facturas

    Con mes y año: las emitidas en ese mes más todas las que tienen saldo
    pendiente (Pendiente, Parcial, Nota de Crédito Parcial).
    """
    try:
        return InvoiceService(db).get_invoices(month, year)
    except LedgerError as e:
        raise to_http_exception(e)


@router.post("/reconcile", response_model=ReconciliationResult)
def reconcile_invoices(db: Session = Depends(get_db)):
    """Recalcular monto pagado y estado de todas las facturas desde pagos y notas de crédito"""
    reconciler = PaymentReconciler(db)
    return run_ledger_operation(reconciler.reconcile_all, "summary", "Error al conciliar las facturas")


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: UUID, db: Session = Depends(get_db)):
    """Obtener factura con items, pagos y notas de crédito"""
    try:
        return InvoiceService(db).get_invoice_by_id(invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.put("/{invoice_id}", response_model=InvoiceResult)
def update_invoice(invoice_id: UUID, invoice_data: InvoiceUpdate, db: Session = Depends(get_db)):
    """
    Editar una factura

    Los items se reemplazan completos; número y NCF se conservan.
    """
    service = InvoiceService(db)
    return run_ledger_operation(
        lambda: InvoiceDetail.model_validate(service.update_invoice(invoice_id, invoice_data)),
        "invoice",
        "Error al actualizar la factura",
    )


@router.delete("/{invoice_id}", response_model=OperationResult)
def delete_invoice(invoice_id: UUID, db: Session = Depends(get_db)):
    """Eliminar factura, sus pagos y notas de crédito, revirtiendo el inventario"""
    service = InvoiceService(db)
    return run_ledger_operation(lambda: service.delete_invoice(invoice_id), "message", "Error al eliminar la factura")


@router.get("/{invoice_id}/payments", response_model=List[PaymentOut])
def get_invoice_payments(invoice_id: UUID, db: Session = Depends(get_db)):
    try:
        return PaymentService(db).get_payments_by_invoice(invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{invoice_id}/credit-notes", response_model=List[CreditNoteOut])
def get_invoice_credit_notes(invoice_id: UUID, db: Session = Depends(get_db)):
    try:
        return CreditNoteService(db).get_credit_notes_by_invoice(invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)


# ===== PAGOS =====

@payments_router.post("/", response_model=PaymentResult)
def create_payment(payment_data: PaymentCreate, db: Session = Depends(get_db)):
    """Registrar un pago; el estado de la factura se recalcula"""
    service = PaymentService(db)
    return run_ledger_operation(
        lambda: PaymentOut.model_validate(service.create_payment(payment_data)),
        "payment",
        "Error al registrar el pago",
    )


@payments_router.get("/", response_model=List[PaymentOut])
def list_payments(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db)
):
    try:
        return PaymentService(db).get_payments(month, year)
    except LedgerError as e:
        raise to_http_exception(e)


@payments_router.patch("/{payment_id}", response_model=PaymentResult)
def update_payment(payment_id: UUID, payment_data: PaymentUpdate, db: Session = Depends(get_db)):
    service = PaymentService(db)
    return run_ledger_operation(
        lambda: PaymentOut.model_validate(service.update_payment(payment_id, payment_data)),
        "payment",
        "Error al actualizar el pago",
    )


@payments_router.delete("/{payment_id}", response_model=OperationResult)
def delete_payment(payment_id: UUID, db: Session = Depends(get_db)):
    service = PaymentService(db)
    return run_ledger_operation(lambda: service.delete_payment(payment_id), "message", "Error al eliminar el pago")


# ===== NOTAS DE CRÉDITO =====

@credit_notes_router.post("/", response_model=CreditNoteResult)
def create_credit_note(credit_note_data: CreditNoteCreate, db: Session = Depends(get_db)):
    """
    Emitir nota de crédito contra una factura

    El impuesto se acredita en proporción al subtotal de la factura y las
    cantidades acreditadas regresan al inventario.
    """
    service = CreditNoteService(db)
    return run_ledger_operation(
        lambda: CreditNoteOut.model_validate(service.create_credit_note(credit_note_data)),
        "credit_note",
        "Error al crear la nota de crédito",
    )


@credit_notes_router.get("/", response_model=List[CreditNoteOut])
def list_credit_notes(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db)
):
    try:
        return CreditNoteService(db).get_credit_notes(month, year)
    except LedgerError as e:
        raise to_http_exception(e)


@credit_notes_router.get("/{credit_note_id}", response_model=CreditNoteOut)
def get_credit_note(credit_note_id: UUID, db: Session = Depends(get_db)):
    try:
        return CreditNoteService(db).get_credit_note_by_id(credit_note_id)
    except LedgerError as e:
        raise to_http_exception(e)


@credit_notes_router.put("/{credit_note_id}", response_model=CreditNoteResult)
def update_credit_note(credit_note_id: UUID, credit_note_data: CreditNoteUpdate, db: Session = Depends(get_db)):
    service = CreditNoteService(db)
    return run_ledger_operation(
        lambda: CreditNoteOut.model_validate(service.update_credit_note(credit_note_id, credit_note_data)),
        "credit_note",
        "Error al actualizar la nota de crédito",
    )


@credit_notes_router.delete("/{credit_note_id}", response_model=OperationResult)
def delete_credit_note(credit_note_id: UUID, db: Session = Depends(get_db)):
    service = CreditNoteService(db)
    return run_ledger_operation(
        lambda: service.delete_credit_note(credit_note_id),
        "message",
        "Error al eliminar la nota de crédito",
    )
