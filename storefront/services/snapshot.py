from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from storefront.models import CartLineItem, CompanyInfo, OrderSnapshot


def build_snapshot(
    items: Iterable[CartLineItem],
    company_info: Optional[CompanyInfo],
    now: Optional[datetime] = None,
) -> OrderSnapshot:
    """
    Freeze the cart into an order document.

    The seller identity is part of the document, so it must be loaded first;
    callers show a loading state instead of calling this with ``None``.
    """
    if company_info is None:
        raise ValueError("company info is not loaded yet")

    frozen = tuple(replace(it) for it in items)
    total = sum((it.line_total for it in frozen), Decimal("0"))
    return OrderSnapshot(
        items=frozen,
        total=total,
        company_info=company_info,
        timestamp=now or datetime.now(),
    )
