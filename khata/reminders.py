"""
Reminder message text.

Builds the plain-text bodies sent to a customer: a short balance reminder
and a detailed statement. Asterisks mark bold text for chat apps.
Delivering the message (link building, opening a chat) happens elsewhere.
"""

from decimal import Decimal
from typing import Optional

from khata.config import get_settings
from khata.formatting import format_date_only, format_rupee
from khata.models.ledger import BalanceStatus, Contact, LedgerView


def _greeting(contact: Contact) -> str:
    return f"Hello {contact.name},\n\n"


def _signature(signature_lines: Optional[list[str]]) -> str:
    if signature_lines is None:
        signature_lines = get_settings().ledger.signature_lines
    if not signature_lines:
        return ""
    return "\n\nFrom,\n" + "\n".join(signature_lines)


def build_balance_reminder(
    contact: Contact,
    balance: Decimal,
    signature_lines: Optional[list[str]] = None,
) -> str:
    """
    Short reminder stating the current balance.

    The footer defaults to the configured business signature; pass an
    empty list to leave it off.
    """
    message = _greeting(contact)
    status = BalanceStatus.from_balance(balance)
    if status is BalanceStatus.SETTLED:
        message += "*Your account balance is settled. Thank you!*"
    else:
        message += f"*Your current balance is {format_rupee(abs(balance))} ({status.label}).*"
    return message + _signature(signature_lines)


def build_statement_reminder(
    contact: Contact,
    view: LedgerView,
    signature_lines: Optional[list[str]] = None,
) -> str:
    """
    Detailed statement: one line per entry, newest first, then the balance.

    Entry line format:
        - Jan 5, 2025: नाम (You Gave) 🔴 *₹500.00* (gold ring)
    """
    message = _greeting(contact) + "Here are your transaction details:\n\n"

    if view.is_empty:
        message += "No transactions recorded yet."
        return message + _signature(signature_lines)

    for tx in view.transactions:
        line = (
            f"- {format_date_only(tx.effective_date)}: "
            f"{tx.direction.label} {tx.direction.emoji} *{format_rupee(tx.amount)}*"
        )
        if tx.description:
            line += f" ({tx.description})"
        message += line + "\n"

    message += (
        f"\n\n*Your current balance is {format_rupee(abs(view.balance))} "
        f"({view.status.label}).*"
    )
    return message + _signature(signature_lines)
