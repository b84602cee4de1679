"""Tests for request payload parsing and note appending."""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from sales_kernel.domain.dtos import OperationalExtra, ReceiptInput
from sales_kernel.domain.notes import append_note
from sales_kernel.domain.statuses import Actor, ReceiptType, Role
from sales_kernel.exceptions import ValidationError


class TestOperationalExtraFromMapping:
    def test_empty_mapping_gives_defaults(self):
        assert OperationalExtra.from_mapping(None) == OperationalExtra()
        assert OperationalExtra.from_mapping({}) == OperationalExtra()

    def test_parses_loose_values(self):
        provider = uuid4()
        extra = OperationalExtra.from_mapping(
            {
                "service_type_id": str(provider),
                "service_provider_ids": [str(provider)],
                "total_amount": "1200.50",
                "installments_count": 4,
                "first_due_date": "2024-03-15T00:00:00.000Z",
                "correction_note": "price fixed",
            }
        )

        assert extra.service_type_id == provider
        assert extra.service_provider_ids == (provider,)
        assert extra.total_amount == Decimal("1200.50")
        assert extra.first_due_date == date(2024, 3, 15)
        assert extra.changes_financial_data

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            OperationalExtra.from_mapping({"reason": "typo"})
        assert exc_info.value.field == "extra"
        assert "reason" in exc_info.value.reason

    def test_float_amount_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            OperationalExtra.from_mapping({"total_amount": 10.5})
        assert exc_info.value.field == "total_amount"

    def test_malformed_amount_rejected(self):
        with pytest.raises(ValidationError):
            OperationalExtra.from_mapping({"total_amount": "ten"})

    def test_non_finite_amount_text_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            OperationalExtra.from_mapping({"total_amount": "NaN"})
        assert exc_info.value.field == "total_amount"

    def test_amount_text_is_trimmed(self):
        extra = OperationalExtra.from_mapping({"total_amount": " 99.90 "})
        assert extra.total_amount == Decimal("99.90")

    @pytest.mark.parametrize(
        "data",
        [
            {"service_type_id": "not-a-uuid"},
            {"service_provider_ids": ["nope"]},
            {"first_due_date": "15/03/2024"},
        ],
    )
    def test_malformed_identifiers_and_dates_rejected(self, data):
        with pytest.raises(ValidationError) as exc_info:
            OperationalExtra.from_mapping(data)
        assert exc_info.value.field == "extra"

    def test_note_only_does_not_touch_financial_data(self):
        extra = OperationalExtra.from_mapping({"note": "call customer"})
        assert not extra.changes_financial_data


class TestReceiptInput:
    def test_type_coerced_from_string(self):
        assert ReceiptInput(receipt_type="link").receipt_type is ReceiptType.LINK

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            ReceiptInput(receipt_type="fax")

    def test_data_frozen_and_thawed(self):
        source = {"bank": "001", "lines": [{"n": 1}]}
        receipt = ReceiptInput(data=source)

        with pytest.raises(TypeError):
            receipt.data["bank"] = "237"
        source["bank"] = "237"
        assert receipt.data["bank"] == "001"
        assert receipt.data_as_json() == {"bank": "001", "lines": [{"n": 1}]}

    def test_no_data(self):
        assert ReceiptInput().data_as_json() is None


class TestActor:
    def test_role_coerced_from_string(self):
        actor = Actor(actor_id=uuid4(), role="financeiro")
        assert actor.role is Role.FINANCEIRO

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            Actor(actor_id=uuid4(), role="auditor")


class TestAppendNote:
    AT = datetime(2024, 1, 10, 12, 30, 5, 123456, tzinfo=timezone.utc)

    def test_first_note(self):
        assert (
            append_note(None, " fixed the amount ", label="CORRECTION", at=self.AT)
            == "[2024-01-10T12:30:05+00:00] CORRECTION: fixed the amount"
        )

    def test_existing_text_preserved(self):
        result = append_note("original remark", "second", label="CORRECTION", at=self.AT)
        assert result.splitlines() == [
            "original remark",
            "[2024-01-10T12:30:05+00:00] CORRECTION: second",
        ]
