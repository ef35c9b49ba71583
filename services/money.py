"""
Money Calculator.

Pure functions for discounts and VAT. This is the only place money is
computed; the ledger and the routers call in here instead of doing their own
arithmetic. Everything is `Decimal`, rounded half-up to 2 places.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Tuple, Union

from utils.errors import InvalidDiscount, ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

DISCOUNT_TYPES = ("amount", "percentage")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so 0.1 stays 0.1 and not its binary expansion
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value!r}")


def round2(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_amount(value: Number) -> Decimal:
    """Parse a money amount handed in from outside. Fractions of a cent are refused, not rounded."""
    amount = to_decimal(value)
    try:
        exact = amount == amount.quantize(CENT)
    except InvalidOperation:
        exact = False
    if not exact:
        raise ValidationError(f"Amount {value!r} must be a whole number of cents")
    return amount.quantize(CENT)


@dataclass(frozen=True)
class DiscountResult:
    base_price: Decimal
    discount_type: str
    discount_amount: Decimal
    discount_value: Decimal  # money actually taken off
    total_amount: Decimal


@dataclass(frozen=True)
class VATResult:
    subtotal: Decimal
    vat_percentage: Decimal
    vat_amount: Decimal
    total_with_vat: Decimal


def calculate_discount(base_price: Number, discount_type: str, discount_amount: Number) -> DiscountResult:
    base = to_decimal(base_price)
    amount = to_decimal(discount_amount)

    if base < 0:
        raise InvalidDiscount("Base price cannot be negative")
    if amount < 0:
        raise InvalidDiscount("Discount amount cannot be negative")

    if discount_type == "percentage":
        if amount > HUNDRED:
            raise InvalidDiscount("Discount percentage cannot exceed 100%")
        discount_value = round2(base * amount / HUNDRED)
    elif discount_type == "amount":
        if amount > base:
            raise InvalidDiscount("Discount amount cannot exceed base price")
        discount_value = round2(amount)
    else:
        raise InvalidDiscount(f"Unknown discount type: {discount_type!r}")

    total = round2(base - discount_value)

    return DiscountResult(
        base_price=round2(base),
        discount_type=discount_type,
        discount_amount=amount,
        discount_value=discount_value,
        total_amount=max(total, ZERO),
    )


def calculate_vat(subtotal: Number, vat_percentage: Number) -> VATResult:
    """VAT is applied after the discount, on the discounted subtotal."""
    sub = to_decimal(subtotal)
    pct = to_decimal(vat_percentage)

    if sub < 0:
        raise ValidationError("Subtotal cannot be negative")
    if pct < 0 or pct > HUNDRED:
        raise ValidationError("VAT percentage must be between 0 and 100")

    vat_amount = round2(sub * pct / HUNDRED)

    return VATResult(
        subtotal=round2(sub),
        vat_percentage=pct,
        vat_amount=vat_amount,
        total_with_vat=round2(sub + vat_amount),
    )


def validate_discount(base_price: Number, discount_type: str, discount_amount: Number) -> Tuple[bool, Optional[str]]:
    try:
        calculate_discount(base_price, discount_type, discount_amount)
        return True, None
    except ValidationError as e:
        return False, str(e)
