from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerEntry:
    account_id: int
    amount: Decimal
    category_type: Optional[str] = None


def signed_amount(entry: LedgerEntry) -> Decimal:
    amount = _coerce_amount(entry.amount)
    if entry.category_type == "income":
        return amount
    if entry.category_type == "expense":
        return -amount
    return ZERO


def compute_balances(
    entries: Iterable[LedgerEntry],
    account_ids: Iterable[int],
) -> dict[int, Decimal]:
    """Income adds, expense subtracts; accounts with no entries stay at zero."""
    balances = {account_id: ZERO for account_id in account_ids}
    for entry in entries:
        if entry.account_id not in balances:
            continue
        balances[entry.account_id] += signed_amount(entry)
    return balances


def _coerce_amount(value: Decimal | float | int | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
