from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.constants import PRODUCT_DESCRIPTION_MAX, PRODUCT_NAME_MAX
from storefront.models import Product


def _is_number(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, Decimal):
        return v.is_finite()
    return isinstance(v, (int, float)) and math.isfinite(v)


@dataclass
class ProductValidation:
    valid: bool
    errors: Dict[str, Any] = field(default_factory=lambda: {"variants": {}})

    @property
    def name(self) -> Optional[str]:
        return self.errors.get("name")

    @property
    def description(self) -> Optional[str]:
        return self.errors.get("description")

    @property
    def variants(self) -> Dict[int, Dict[str, str]]:
        return self.errors["variants"]


def validate_product_data(p: Product) -> ProductValidation:
    errors: Dict[str, Any] = {"variants": {}}

    if not p.name or not p.name.strip():
        errors["name"] = "Product name is required."
    elif len(p.name) > PRODUCT_NAME_MAX:
        errors["name"] = f"Product name cannot exceed {PRODUCT_NAME_MAX} characters."

    if p.description and len(p.description) > PRODUCT_DESCRIPTION_MAX:
        errors["description"] = f"Description cannot exceed {PRODUCT_DESCRIPTION_MAX} characters."

    for i, v in enumerate(p.variants):
        ve: Dict[str, str] = {}
        if not v.name or not str(v.name).strip():
            ve["name"] = "Variant name is required."

        if not _is_number(v.price):
            ve["price"] = "Invalid price."
        elif v.price < 0:
            ve["price"] = "Price must be >= 0."

        stock = v.stock
        if not _is_number(stock) or not float(stock).is_integer():
            ve["stock"] = "Stock must be a whole number."
        elif stock < 0:
            ve["stock"] = "Stock must be >= 0."

        if ve:
            errors["variants"][i] = ve

    valid = "name" not in errors and "description" not in errors and not errors["variants"]
    return ProductValidation(valid=valid, errors=errors)
