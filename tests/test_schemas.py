"""
Tests for request schemas
"""

import pytest
from pydantic import ValidationError

from conftest import booking_payload


class TestBookingCreate:

    def test_currency_upper_cased(self):
        from yono.schemas.booking import BookingCreate

        assert BookingCreate(**booking_payload(currency="inr")).currency == "INR"

    def test_notes_sanitized(self):
        from yono.schemas.booking import BookingCreate

        payload = booking_payload(notes='Aisle <script>alert(1)</script>seat <b onclick="x">')
        notes = BookingCreate(**payload).notes

        assert "<script>" not in notes
        assert "onclick=" not in notes
        assert notes.startswith("Aisle seat")

    @pytest.mark.parametrize("overrides", [
        {"amount": 0},
        {"travelers": []},
        {"type": "train"},
        {"currency": "RUPEE"},
        {"travelers": [{"first_name": "A", "last_name": "B", "gender": "Q"}]},
    ])
    def test_rejected_payloads(self, overrides):
        from yono.schemas.booking import BookingCreate

        with pytest.raises(ValidationError):
            BookingCreate(**booking_payload(**overrides))


class TestBookingRow:

    def test_from_row_tolerates_nulls_and_unknown_columns(self):
        from yono.schemas.booking import Booking

        booking = Booking.from_row({
            "id": "b-1",
            "reference": "YONO-12345678-ABCD",
            "type": "hotel",
            "status": "initiated",
            "amount": 100,
            "currency": "INR",
            "travelers": None,
            "status_timeline": None,
            "legacy_column": "ignored",
            "created_at": "2026-01-01T00:00:00.000Z",
            "updated_at": "2026-01-01T00:00:00.000Z",
        })

        assert booking.status.value == "draft"
        assert booking.travelers == []
        assert booking.status_timeline == []
        assert "legacy_column" not in booking.to_row()
