"""
Validators — Amount formatting and customer field resolution for PayU requests.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional

from payu_provider.exceptions import ValidationError

TWO_PLACES = Decimal("0.01")


def to_decimal(amount: Any) -> Decimal:
    """Convert an amount to a 2-place Decimal without going through float."""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}")

    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(amount: Any) -> str:
    """Format an amount as PayU expects it: positive, exactly 2 decimals.

    >>> format_amount(999)
    '999.00'
    >>> format_amount("1500.5")
    '1500.50'
    """
    value = to_decimal(amount)
    if value <= 0:
        raise ValidationError(f"Amount must be greater than zero, got {amount!r}")
    return f"{value:.2f}"


def clean(value: Any) -> str:
    """Strip a value to a string; None and blanks become ''."""
    if value is None:
        return ""
    return str(value).strip()


def first_present(*candidates: Any) -> str:
    """Return the first non-blank candidate (as a stripped string), else ''."""
    for candidate in candidates:
        cleaned = clean(candidate)
        if cleaned:
            return cleaned
    return ""


def resolve_customer_fields(
    data: Mapping[str, Any],
    customer: Optional[Any],
) -> dict:
    """Resolve email, firstname and phone for a PayU request.

    Lookup order per field: explicit payload value → customer context →
    billing address. Raises ValidationError listing every field that could
    not be resolved, since PayU rejects requests without them.
    """
    address = getattr(customer, "billing_address", None) if customer else None

    resolved = {
        "email": first_present(
            data.get("email"),
            getattr(customer, "email", None),
            getattr(address, "email", None),
        ),
        "firstname": first_present(
            data.get("firstname"),
            getattr(customer, "first_name", None),
            getattr(address, "first_name", None),
        ),
        "phone": first_present(
            data.get("phone"),
            getattr(customer, "phone", None),
            getattr(address, "phone", None),
        ),
    }

    missing = [name for name, value in resolved.items() if not value]
    if missing:
        raise ValidationError(f"PayU requires customer fields that could not be resolved: {', '.join(missing)}")
    return resolved
