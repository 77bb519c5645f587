"""
Tests para la asignación y resincronización de secuencias NCF
"""

import pytest
from datetime import date

from app.common.cache import register_invalidation_listener
from app.common.exceptions import SequenceConflictError, ValidationError
from app.database.database import transaction
from app.modules.invoices.schemas import InvoiceCreate
from app.modules.invoices.service import InvoiceService
from app.modules.sequences.models import NcfSequence
from app.modules.sequences.service import (
    SequenceAllocator, SequenceService, format_ncf, format_document_number, parse_trailing_number
)


def fiscal_invoice(product, ncf_type="B01", quantity="1"):
    return InvoiceCreate(
        client_name="Cliente Contado",
        ncf_type=ncf_type,
        items=[{"product_id": product.id, "quantity": quantity, "price": "100.00"}],
        tax="18.00",
    )


def counter_value(db_session, key):
    db_session.expire_all()
    sequence = db_session.query(NcfSequence).filter(NcfSequence.key == key).first()
    return sequence.current_value if sequence else None


class TestFormats:

    def test_ncf_is_type_plus_eight_digits(self):
        assert format_ncf("B01", 1) == "B0100000001"
        assert format_ncf("B04", 12345678) == "B0412345678"

    def test_document_number(self):
        assert format_document_number("FAC", 2026, 7) == "FAC-2026-007"
        assert format_document_number("NC", 2026, 1234) == "NC-2026-1234"

    def test_parse_trailing_number(self):
        assert parse_trailing_number("014") == 14
        assert parse_trailing_number("00000007") == 7
        assert parse_trailing_number("ABC") is None
        assert parse_trailing_number(None) is None


class TestSequenceAllocator:

    def test_first_allocation_creates_counter(self, db_session):
        with transaction(db_session):
            allocator = SequenceAllocator(db_session)
            assert allocator.allocate("B01") == 1
            assert allocator.allocate("B01") == 2

        assert counter_value(db_session, "B01") == 2

    def test_counters_are_independent_per_key(self, db_session):
        with transaction(db_session):
            allocator = SequenceAllocator(db_session)
            assert allocator.next_ncf("B01") == "B0100000001"
            assert allocator.next_ncf("B02") == "B0200000001"
            assert allocator.next_document_number("FAC", 2026) == "FAC-2026-001"
            assert allocator.next_document_number("FAC", 2026) == "FAC-2026-002"

    def test_rolled_back_allocation_is_not_consumed(self, db_session):
        with transaction(db_session):
            SequenceAllocator(db_session).allocate("B01")

        with pytest.raises(RuntimeError):
            with transaction(db_session):
                SequenceAllocator(db_session).allocate("B01")
                raise RuntimeError("fallo posterior a la asignación")

        assert counter_value(db_session, "B01") == 1


class TestSequenceService:

    def test_list_creates_standard_types(self, db_session):
        sequences = SequenceService(db_session).list_sequences()
        keys = [s.key for s in sequences]
        assert keys == sorted(keys)
        for ncf_type in ("B01", "B02", "B04", "B14", "B15"):
            assert ncf_type in keys
        assert all(s.current_value == 0 for s in sequences)

    def test_set_sequence(self, db_session):
        service = SequenceService(db_session)
        sequence = service.set_sequence("B01", 41)
        assert sequence.current_value == 41

        with transaction(db_session):
            assert SequenceAllocator(db_session).next_ncf("B01") == "B0100000042"

    def test_set_sequence_rejects_negative(self, db_session):
        with pytest.raises(ValidationError):
            SequenceService(db_session).set_sequence("B01", -1)

    def test_sync_aligns_counters_with_documents(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(fiscal_invoice(sample_product))
        number_key = f"FAC-{invoice.issue_date.year}"

        service = SequenceService(db_session)
        service.set_sequence("B01", 0)
        service.set_sequence(number_key, 30)
        service.set_sequence("B15", 9)  # sin documentos

        changed = service.sync_sequences()

        assert changed == 3
        assert counter_value(db_session, "B01") == 1
        assert counter_value(db_session, number_key) == 1
        assert counter_value(db_session, "B15") == 0

    def test_sync_is_idempotent(self, db_session, sample_product):
        InvoiceService(db_session).create_invoice(fiscal_invoice(sample_product))
        service = SequenceService(db_session)
        service.sync_sequences()
        assert service.sync_sequences() == 0


class TestSequenceConflict:

    def test_stale_counter_raises_retryable_conflict_and_resyncs(self, db_session, sample_product):
        service = InvoiceService(db_session)
        first = service.create_invoice(fiscal_invoice(sample_product))
        assert first.ncf == "B0100000001"

        # Contador por detrás de los documentos reales (p. ej. reparación manual)
        SequenceService(db_session).set_sequence("B01", 0)

        with pytest.raises(SequenceConflictError) as exc_info:
            service.create_invoice(fiscal_invoice(sample_product))

        assert exc_info.value.retryable is True
        assert counter_value(db_session, "B01") == 1

        # Nada del intento fallido quedó escrito
        db_session.refresh(sample_product)
        assert sample_product.stock == 9

        retried = service.create_invoice(fiscal_invoice(sample_product))
        assert retried.ncf == "B0100000002"

    def test_no_fiscal_invoice_does_not_touch_ncf_counters(self, db_session, sample_product):
        invoice = InvoiceService(db_session).create_invoice(fiscal_invoice(sample_product, ncf_type="S/C"))
        assert invoice.ncf is None
        assert invoice.number == f"FAC-{date.today().year}-001"
        assert counter_value(db_session, "B01") is None


class TestSequenceRouter:

    def test_list_sequences(self, client):
        response = client.get("/sequences/")
        assert response.status_code == 200
        keys = [s["key"] for s in response.json()["sequences"]]
        assert "B01" in keys and "B04" in keys

    def test_put_and_sync(self, client):
        seen = []
        register_invalidation_listener(seen.append)

        response = client.put("/sequences/b02", json={"current_value": 12})
        assert response.status_code == 200
        assert response.json()["key"] == "B02"
        assert response.json()["current_value"] == 12

        response = client.post("/sequences/sync")
        assert response.status_code == 200
        assert response.json() == {"success": True, "updated": 1}
        assert seen == [("/settings",), ("/settings",)]

    def test_put_rejects_negative(self, client):
        response = client.put("/sequences/B01", json={"current_value": -5})
        assert response.status_code == 422
