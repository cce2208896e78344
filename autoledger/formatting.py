"""Date, currency and confirmation formatting."""

from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from autoledger.config import DEFAULT_TIMEZONE
from autoledger.db.models import Transaction
from autoledger.transfers import TransferInfo


def current_local_times(
    tz_name: str = DEFAULT_TIMEZONE, now: datetime | None = None
) -> tuple[date, time]:
    """Current date and minute-precision time in the given timezone."""
    local = (now or datetime.now(tz=timezone.utc)).astimezone(ZoneInfo(tz_name))
    return local.date(), local.time().replace(second=0, microsecond=0, tzinfo=None)


def parse_bank_date(ddmmyyyy: str) -> date:
    """Parse a DD/MM/YYYY date as printed in bank notifications."""
    return datetime.strptime(ddmmyyyy.strip(), "%d/%m/%Y").date()


def parse_bank_time(hhmm: str) -> time:
    """Parse an HH:MM time as printed in bank notifications."""
    return datetime.strptime(hhmm.strip(), "%H:%M").time()


def format_date_for_display(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def format_currency(amount: Decimal) -> str:
    """Format an amount as whole Colombian pesos, e.g. '$ 20.000'."""
    whole = int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    digits = f"{abs(whole):,}".replace(",", ".")
    sign = "-" if whole < 0 else ""
    return f"{sign}$ {digits}"


def format_confidence(confidence: int | None) -> str:
    if confidence is None:
        return "N/A"
    return f"{round(confidence)}%"


def render_confirmation(
    transaction: Transaction,
    balance: Decimal,
    category: str,
    bank: str,
    payment_type: str,
    transfer_info: TransferInfo | None = None,
) -> str:
    """Build the reply shown to the user after a message is posted."""
    when = f"{format_date_for_display(transaction.date)} {transaction.time.strftime('%H:%M')}"
    if transfer_info and transfer_info.is_internal_transfer:
        return (
            "✅ Internal Transfer\n\n"
            f"💰 {format_currency(transaction.amount)}\n"
            f"🔄 {transfer_info.rule_name}\n"
            f"📱 To: {transfer_info.destination_phone}\n"
            f"📅 {when}\n"
            f"📊 Balance: {format_currency(balance)}"
        )
    return (
        "✅ Expense registered\n\n"
        f"💰 {format_currency(transaction.amount)}\n"
        f"🏪 {transaction.description}\n"
        f"📅 {when}\n"
        f"🏷️ {category}\n"
        f"💳 {bank} - {payment_type}\n"
        f"📊 Balance: {format_currency(balance)}"
    )
