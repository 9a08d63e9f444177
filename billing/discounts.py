"""
Subscription discount rules.

Each discount kind is a rule object with an ``apply(cost)`` method. Rules are
applied in the order the discounts were added and the result is clamped at
zero.
"""

from decimal import Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class DiscountRule:
    kind = None

    def __init__(self, value):
        self.value = Decimal(value)

    def apply(self, cost):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.value})"


class PercentageDiscount(DiscountRule):
    kind = "percentage"

    def apply(self, cost):
        return cost * (1 - self.value / Decimal("100"))


class FixedAmountDiscount(DiscountRule):
    kind = "fixed_amount"

    def apply(self, cost):
        return cost - self.value


class FreeMonthsDiscount(DiscountRule):
    """Free months are recorded on the subscription but do not lower the
    monthly cost. Billing has to honour them when issuing receipts."""

    kind = "free_months"

    def apply(self, cost):
        return cost


RULES = {
    rule.kind: rule
    for rule in (PercentageDiscount, FixedAmountDiscount, FreeMonthsDiscount)
}


def rule_for(kind, value):
    try:
        return RULES[kind](value)
    except KeyError:
        raise ValueError(f"Unknown discount type: {kind}") from None


def apply_discounts(base_cost, rules):
    cost = Decimal(base_cost)
    for rule in rules:
        cost = rule.apply(cost)
    return max(cost, ZERO).quantize(CENT)
