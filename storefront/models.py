from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from storefront.constants import ORDER_PENDING


def to_decimal(v: Any) -> Decimal:
    if isinstance(v, Decimal):
        return v
    if isinstance(v, float):
        return Decimal(str(v))
    return Decimal(v)


@dataclass(frozen=True)
class CartLineItem:
    product_id: str
    variant_id: str
    name: str
    variant_name: str
    price: Decimal
    quantity: int = 1
    image_url: str = ""
    description: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return self.product_id, self.variant_id

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["price"] = str(self.price)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CartLineItem":
        price = to_decimal(d["price"])
        if price < 0:
            raise ValueError("price must be >= 0")
        quantity = int(d.get("quantity", 1))
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        return cls(
            product_id=str(d["product_id"]),
            variant_id=str(d["variant_id"]),
            name=str(d.get("name", "")),
            variant_name=str(d.get("variant_name", "")),
            price=price,
            quantity=quantity,
            image_url=str(d.get("image_url") or ""),
            description=str(d.get("description") or ""),
        )


@dataclass(frozen=True)
class CompanyInfo:
    name: str
    address: str
    phone: str
    email: str


@dataclass(frozen=True)
class OrderSnapshot:
    """Cart contents frozen at the moment the buyer asked for an order."""

    items: Tuple[CartLineItem, ...]
    total: Decimal
    company_info: CompanyInfo
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [it.to_dict() for it in self.items],
            "total": str(self.total),
            "company_info": asdict(self.company_info),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OrderSnapshot":
        return cls(
            items=tuple(CartLineItem.from_dict(it) for it in d["items"]),
            total=to_decimal(d["total"]),
            company_info=CompanyInfo(**d["company_info"]),
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )


@dataclass(frozen=True)
class OrderItem:
    id: Optional[int]
    order_id: str
    product_id: str
    variant_id: str
    product_name: str
    variant_name: str
    quantity: int
    price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class Order:
    id: str
    created_at: str
    total: Decimal
    status: str = ORDER_PENDING
    items: Tuple[OrderItem, ...] = ()


@dataclass
class ProductVariant:
    id: str
    name: str
    price: Any
    stock: Any
    product_id: str = ""


@dataclass
class Product:
    id: str
    name: str
    description: str = ""
    image_url: str = ""
    created_at: str = ""
    variants: List[ProductVariant] = field(default_factory=list)
