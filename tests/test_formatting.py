"""Tests for date, currency and confirmation formatting."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from autoledger.db.models import Transaction, TransactionType
from autoledger.formatting import (
    current_local_times,
    format_confidence,
    format_currency,
    format_date_for_display,
    parse_bank_date,
    parse_bank_time,
    render_confirmation,
)
from autoledger.transfers import TransferInfo


def make_transaction(**overrides) -> Transaction:
    values = dict(
        id="t1",
        date=date(2024, 3, 1),
        time=time(12, 30),
        amount=Decimal("20000"),
        description="RAPPI",
        account_id="A1",
        transaction_type=TransactionType.EXPENSE,
    )
    values.update(overrides)
    return Transaction(**values)


class TestDates:
    """Tests for date helpers."""

    def test_local_times_bogota(self):
        """Test UTC instants are converted to Bogota time, minute precision."""
        now = datetime(2024, 3, 2, 3, 15, 42, tzinfo=timezone.utc)
        assert current_local_times("America/Bogota", now) == (date(2024, 3, 1), time(22, 15))

    def test_local_times_default_is_naive_time(self):
        """Test the returned time carries no tzinfo or seconds."""
        _, local_time = current_local_times()
        assert local_time.tzinfo is None
        assert local_time.second == 0

    def test_parse_bank_date(self):
        """Test DD/MM/YYYY parsing."""
        assert parse_bank_date("01/03/2024") == date(2024, 3, 1)

    def test_parse_bank_date_invalid(self):
        """Test malformed dates raise ValueError."""
        with pytest.raises(ValueError):
            parse_bank_date("2024-03-01")

    def test_parse_bank_time(self):
        """Test HH:MM parsing."""
        assert parse_bank_time(" 07:05 ") == time(7, 5)

    def test_format_date_for_display(self):
        """Test display format."""
        assert format_date_for_display(date(2024, 3, 1)) == "01/03/2024"


class TestCurrency:
    """Tests for format_currency."""

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (Decimal("20000"), "$ 20.000"),
            (Decimal("0"), "$ 0"),
            (Decimal("1234567.5"), "$ 1.234.568"),
            (Decimal("999.49"), "$ 999"),
            (Decimal("-50000"), "-$ 50.000"),
        ],
    )
    def test_format(self, amount, expected):
        """Test whole-peso formatting with dot separators."""
        assert format_currency(amount) == expected

    def test_confidence(self):
        """Test confidence display."""
        assert format_confidence(None) == "N/A"
        assert format_confidence(87) == "87%"


class TestRenderConfirmation:
    """Tests for render_confirmation."""

    def test_expense(self):
        """Test the expense reply."""
        text = render_confirmation(
            make_transaction(), Decimal("80000"), "Food", "Bancolombia", "Debit"
        )
        assert text.startswith("✅ Expense registered")
        assert "💰 $ 20.000" in text
        assert "🏪 RAPPI" in text
        assert "📅 01/03/2024 12:30" in text
        assert "💳 Bancolombia - Debit" in text
        assert text.endswith("📊 Balance: $ 80.000")

    def test_internal_transfer(self):
        """Test the internal transfer reply."""
        info = TransferInfo(
            destination_phone="3104633357",
            from_account_last_four="2651",
            is_internal_transfer=True,
            linked_account_id="A2",
            rule_name="Nequi Personal",
        )
        text = render_confirmation(
            make_transaction(transaction_type=TransactionType.TRANSFER),
            Decimal("80000"),
            "Transfer",
            "Bancolombia",
            "Transfer",
            info,
        )
        assert text.startswith("✅ Internal Transfer")
        assert "🔄 Nequi Personal" in text
        assert "📱 To: 3104633357" in text

    def test_unmatched_transfer_renders_as_expense(self):
        """Test transfers without a rule use the expense layout."""
        info = TransferInfo(destination_phone="3000000000", from_account_last_four=None)
        text = render_confirmation(
            make_transaction(), Decimal("1"), "Missing", "Nequi", "Transfer", info
        )
        assert text.startswith("✅ Expense registered")
