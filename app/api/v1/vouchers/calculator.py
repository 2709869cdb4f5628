"""Voucher arithmetic: discounts, installment split, arrears carry-forward and status derivation.

Pure functions over Decimal; no database access. The generator feeds them with rows read from the
fee structure matrix, the discount store, the installment plan store and the previous voucher.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple
from uuid import UUID

from app.core.enums import DiscountType, VoucherStatus
from app.core.money import HUNDRED, ZERO, floor_money, percent_of, to_decimal

FULL_BILLING_PERCENT = 100


class ChargeLine(NamedTuple):
    """One fee head to bill, already in billing order."""

    fee_head_id: UUID
    base_amount: Decimal


class DiscountRule(NamedTuple):
    fee_head_id: Optional[UUID]  # None -> overall discount
    discount_type: str
    value: Decimal


class ItemAmounts(NamedTuple):
    fee_head_id: UUID
    base_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


class PriorBalance(NamedTuple):
    remaining_amount: Decimal
    deferred_amount: Decimal


class VoucherAmounts(NamedTuple):
    items: List[ItemAmounts]
    current_month_amount: Decimal
    bill_percent: int
    billed_amount: Decimal
    deferred_amount: Decimal
    arrears_brought_forward: Decimal
    total_due: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: VoucherStatus


def rule_discount(base_amount: Decimal, rule: DiscountRule) -> Decimal:
    """Discount one rule grants on one base amount, capped at the base."""
    base = to_decimal(base_amount)
    value = to_decimal(rule.value)
    if value <= 0 or base <= 0:
        return ZERO
    if rule.discount_type == DiscountType.percentage.value:
        amount = percent_of(base, min(value, HUNDRED))
    else:
        amount = value
    return min(amount, base)


def distribute_flat_discount(capacities: Sequence[Decimal], total: Decimal) -> List[Decimal]:
    """
    Split a flat amount over items in proportion to their share of the subtotal.

    All shares but the last are rounded down; the last item absorbs the remainder so the shares sum
    exactly to min(total, subtotal). No share exceeds its item's capacity: if the last item's share
    would, the excess moves back onto earlier items (which have headroom since they were rounded down).
    """
    n = len(capacities)
    if n == 0:
        return []
    caps = [to_decimal(c) for c in capacities]
    subtotal = sum(caps, ZERO)
    total = min(to_decimal(total), subtotal)
    if total <= 0 or subtotal <= 0:
        return [ZERO] * n

    shares = [floor_money(total * cap / subtotal) for cap in caps[:-1]]
    shares.append(total - sum(shares, ZERO))

    excess = shares[-1] - caps[-1]
    if excess > 0:
        shares[-1] = caps[-1]
        for i in range(n - 1):
            if excess <= 0:
                break
            take = min(caps[i] - shares[i], excess)
            shares[i] += take
            excess -= take
    return shares


def apply_discounts(lines: Sequence[ChargeLine], rules: Sequence[DiscountRule]) -> List[ItemAmounts]:
    """
    Resolve the discount of every line.

    Lines with at least one per-head rule take the sum of those rules. Lines without one share the
    overall rules: overall percentages are added together and applied to each line, overall flat
    amounts are added together and spread pro-rata over what is left of those lines.
    """
    per_head: Dict[UUID, List[DiscountRule]] = defaultdict(list)
    overall_percent = ZERO
    overall_flat = ZERO
    for rule in rules:
        if rule.fee_head_id is not None:
            per_head[rule.fee_head_id].append(rule)
        elif rule.discount_type == DiscountType.percentage.value:
            overall_percent += to_decimal(rule.value)
        else:
            overall_flat += to_decimal(rule.value)
    overall_percent = min(overall_percent, HUNDRED)

    discounts: List[Decimal] = []
    uncovered: List[int] = []
    for idx, line in enumerate(lines):
        base = to_decimal(line.base_amount)
        head_rules = per_head.get(line.fee_head_id)
        if head_rules:
            discounts.append(min(sum((rule_discount(base, r) for r in head_rules), ZERO), base))
            continue
        discounts.append(min(percent_of(base, overall_percent), base) if overall_percent > 0 else ZERO)
        uncovered.append(idx)

    if overall_flat > 0 and uncovered:
        headroom = [to_decimal(lines[i].base_amount) - discounts[i] for i in uncovered]
        for i, share in zip(uncovered, distribute_flat_discount(headroom, overall_flat)):
            discounts[i] += share

    items: List[ItemAmounts] = []
    for line, discount in zip(lines, discounts):
        base = to_decimal(line.base_amount)
        final = max(ZERO, base - discount)
        items.append(ItemAmounts(line.fee_head_id, base, base - final, final))
    return items


def split_installment(current_month_amount: Decimal, bill_percent: int) -> Tuple[Decimal, Decimal]:
    """(billed, deferred): billed is rounded down, deferred takes the remainder so both sum exactly."""
    current = to_decimal(current_month_amount)
    if bill_percent >= FULL_BILLING_PERCENT:
        return current, ZERO
    billed = floor_money(current * Decimal(bill_percent) / HUNDRED)
    return billed, current - billed


def carry_forward(prior: Optional[PriorBalance]) -> Decimal:
    """Arrears for a new voucher: the previous voucher's unpaid balance plus its deferred portion."""
    if prior is None:
        return ZERO
    return to_decimal(prior.remaining_amount) + to_decimal(prior.deferred_amount)


def remaining_after(total_due: Decimal, paid_amount: Decimal) -> Decimal:
    return max(ZERO, to_decimal(total_due) - to_decimal(paid_amount))


def derive_status(total_due: Decimal, paid_amount: Decimal, epsilon: Decimal) -> VoucherStatus:
    """
    generated: nothing paid yet; partial: something paid, more than epsilon outstanding;
    paid: something paid and at most epsilon outstanding, or nothing was ever owed.
    """
    paid = to_decimal(paid_amount)
    remaining = remaining_after(total_due, paid)
    if paid > 0:
        return VoucherStatus.paid if remaining <= epsilon else VoucherStatus.partial
    if to_decimal(total_due) <= 0:
        return VoucherStatus.paid
    return VoucherStatus.generated


def compute_voucher(
    lines: Sequence[ChargeLine],
    rules: Sequence[DiscountRule],
    bill_percent: Optional[int],
    prior: Optional[PriorBalance],
    epsilon: Decimal,
) -> VoucherAmounts:
    """All amounts of a freshly generated voucher. bill_percent None means no plan: bill everything."""
    percent = FULL_BILLING_PERCENT if bill_percent is None else int(bill_percent)
    if not 1 <= percent <= FULL_BILLING_PERCENT:
        raise ValueError(f"bill_percent must be between 1 and 100 (got {percent})")

    items = apply_discounts(lines, rules)
    current = sum((i.final_amount for i in items), ZERO)
    billed, deferred = split_installment(current, percent)
    arrears = carry_forward(prior)
    total_due = billed + arrears
    return VoucherAmounts(
        items=items,
        current_month_amount=current,
        bill_percent=percent,
        billed_amount=billed,
        deferred_amount=deferred,
        arrears_brought_forward=arrears,
        total_due=total_due,
        paid_amount=ZERO,
        remaining_amount=total_due,
        status=derive_status(total_due, ZERO, epsilon),
    )
