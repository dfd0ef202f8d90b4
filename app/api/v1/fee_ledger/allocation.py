"""Allocation engine: splits a net payment across selected fee heads.

Selection order is priority: the first selected head is settled before the next one
receives anything. Inside a head the oldest due obligation is paid first. Whatever
cannot be placed on a selected head is returned as ``unallocated``; it is never moved
to a head the operator did not select.

All arithmetic is fixed-point with 2 fractional digits and
``sum(allocated) + unallocated == net_amount`` holds exactly.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from app.core.enums import FeeHeadKind
from app.core.exceptions import InvalidAmount, NoEligibleHeads

from .domain import (
    ZERO,
    AllocationPlan,
    FeeBreakdownRow,
    HeadAllocation,
    ObligationAllocation,
    to_money,
)


def net_amount(amount_received, discount) -> Decimal:
    """Discount is a plain subtraction with a zero floor."""
    return max(ZERO, to_money(amount_received) - to_money(discount))


def priority_order(selected_head_ids: Iterable[str]) -> List[str]:
    """De-duplicate keeping the first occurrence: insertion order of the current selection."""
    return list(dict.fromkeys(h.strip() for h in selected_head_ids if h and h.strip()))


def _spread_over_obligations(row: FeeBreakdownRow, head_amount: Decimal) -> List[ObligationAllocation]:
    if row.kind == FeeHeadKind.LEDGER:
        return [
            ObligationAllocation(
                head_id=row.head_id,
                obligation_id=None,
                amount=head_amount,
                expected_balance=row.balance,
            )
        ]
    lines = sorted(
        (line for line in row.obligations if line.balance > 0),
        key=lambda line: (
            line.due_date,
            line.period_month or line.due_date,
            line.installment_number or 0,
            str(line.obligation_id),
        ),
    )
    out: List[ObligationAllocation] = []
    left = head_amount
    for line in lines:
        if left <= 0:
            break
        amount = to_money(min(left, line.balance))
        out.append(
            ObligationAllocation(
                head_id=row.head_id,
                obligation_id=line.obligation_id,
                amount=amount,
                expected_balance=line.balance,
            )
        )
        left -= amount
    return out


def allocate(
    amount_received,
    discount,
    selected_head_ids: Sequence[str],
    rows: Sequence[FeeBreakdownRow],
) -> AllocationPlan:
    """
    Compute how a payment lands on the selected heads. Pure: no I/O, no hidden state.

    Raises InvalidAmount for a non-positive amount or a negative discount, and
    NoEligibleHeads (carrying the full net amount as unallocated) when nothing is
    selected or every selected head is already settled.
    """
    amount = to_money(amount_received)
    discount_amount = to_money(discount)
    if amount <= 0:
        raise InvalidAmount("Amount received must be greater than 0")
    if discount_amount < 0:
        raise InvalidAmount("Discount cannot be negative")
    net = net_amount(amount, discount_amount)

    order = priority_order(selected_head_ids)
    if not order:
        raise NoEligibleHeads("No fee heads selected", net)

    rows_by_id: Dict[str, FeeBreakdownRow] = {r.head_id: r for r in rows}
    candidates = [rows_by_id[h] for h in order if h in rows_by_id and rows_by_id[h].balance > 0]
    if not candidates:
        raise NoEligibleHeads("Selected fee heads have no outstanding balance", net)

    head_allocations: List[HeadAllocation] = []
    obligation_allocations: List[ObligationAllocation] = []
    remaining = net
    for row in candidates:
        if remaining <= 0:
            break
        head_amount = to_money(min(remaining, row.balance))
        spread = _spread_over_obligations(row, head_amount)
        # Only what actually landed on obligations counts for the head
        placed = sum((a.amount for a in spread), ZERO)
        if placed <= 0:
            continue
        head_allocations.append(HeadAllocation(head_id=row.head_id, amount=placed))
        obligation_allocations.extend(spread)
        remaining -= placed

    allocated = sum((a.amount for a in head_allocations), ZERO)
    return AllocationPlan(
        amount_received=amount,
        discount=discount_amount,
        net_amount=net,
        head_allocations=head_allocations,
        obligation_allocations=obligation_allocations,
        unallocated=net - allocated,
    )
