from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    "DEFAULT_TAX_RATE": Decimal("12.00"),
    "TAX_NAME": "IVA",
    "DEFAULT_DUE_DAYS": 30,
    "DEFAULT_CURRENCY": "USD",
    "USAGE_WARNING_PERCENT": Decimal("80"),
}


def billing_setting(name):
    """Read a key of ``settings.BILLING``, falling back to the defaults."""
    return getattr(settings, "BILLING", {}).get(name, DEFAULTS[name])
