from decimal import Decimal, ROUND_HALF_UP

from storefront.config import settings


def amount(v) -> str:
    q = Decimal(1).scaleb(-settings.decimals)
    return str(Decimal(str(v)).quantize(q, rounding=ROUND_HALF_UP))


def money(v) -> str:
    return f"{settings.currency_symbol}{amount(v)}"
