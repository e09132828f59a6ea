"""
Pricing service：小計與折扣計算

純計算。金額一律用 Decimal，以 ROUND_HALF_EVEN（銀行家捨入）取到貨幣最小單位，
大量預覽時不會往同一個方向累積誤差。
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Dict, Tuple

from core.entities import Cart, ItemKey
from core.exceptions import ValidationError

HUNDRED = Decimal("100")


def smallest_unit(decimals: int) -> Decimal:
    """
    貨幣的最小單位

    範例：
        smallest_unit(2) -> Decimal("0.01")
        smallest_unit(0) -> Decimal("1")
    """
    return Decimal(1).scaleb(-decimals)


def round_money(amount: Decimal, decimals: int = 2) -> Decimal:
    return amount.quantize(smallest_unit(decimals), rounding=ROUND_HALF_EVEN)


def to_decimal(value, field: str = "value") -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}")
    return result


def to_money(value, field: str = "amount", decimals: int = 2) -> Decimal:
    """
    轉成金額，補齊到貨幣最小單位

    範例：
        to_money("10.5")   -> Decimal("10.50")
        to_money("10.005") -> ValidationError（比最小單位更細，不做捨入）

    異常：
        ValidationError: 不是數字，或小數位數超過貨幣允許的位數
    """
    amount = to_decimal(value, field)
    unit = smallest_unit(decimals)
    if amount != amount.quantize(unit, rounding=ROUND_HALF_EVEN):
        raise ValidationError(f"{field} has more than {decimals} decimal places, got {value!r}")
    return amount.quantize(unit)


def validate_discount_percent(value) -> Decimal:
    percent = to_decimal(value, "discount_percent")
    if percent < 0 or percent > HUNDRED:
        raise ValidationError(f"discount_percent must be between 0 and 100, got {percent}")
    return percent


def cart_subtotal(cart: Cart, unit_prices: Dict[ItemKey, Decimal], decimals: int = 2) -> Decimal:
    """每一行 單價 x 數量 的總和"""
    total = sum(
        (unit_prices[key] * item.quantity for key, item in cart.items.items()),
        Decimal(0),
    )
    return round_money(total, decimals)


def apply_discount(subtotal: Decimal, discount_percent: Decimal, decimals: int = 2) -> Tuple[Decimal, Decimal]:
    """
    一個百分比套用在整筆小計（不是逐行）

    返回：
        (discount, total)，total = subtotal - discount

    範例：
        apply_discount(Decimal("100.00"), Decimal("10")) -> (Decimal("10.00"), Decimal("90.00"))
        apply_discount(Decimal("0.25"), Decimal("50"))   -> (Decimal("0.12"), Decimal("0.13"))
    """
    discount = round_money(subtotal * discount_percent / HUNDRED, decimals)
    return discount, subtotal - discount
