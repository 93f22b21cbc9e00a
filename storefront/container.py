from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from storefront.config import settings
from storefront.db.store import RemoteStore
from storefront.services.auth import AuthService
from storefront.services.cart import CartService
from storefront.services.checkout import CheckoutDispatcher
from storefront.services.order_pdf import OrderDocumentRenderer
from storefront.services.preferences import VisitorPreferences
from storefront.services.shop import ShopService
from storefront.storage.local_store import LocalStore, SqliteBackend


@dataclass
class Services:
    """Everything the web app and the bot share, created once at startup."""

    store: RemoteStore
    shop: ShopService
    auth: AuthService
    renderer: OrderDocumentRenderer
    local_backend: SqliteBackend

    def local_store(self, visitor_id: str) -> LocalStore:
        return LocalStore(self.local_backend, namespace=f"{settings.store_namespace}:{visitor_id}")

    def cart(self, visitor_id: str) -> CartService:
        return CartService(self.local_store(visitor_id))

    def preferences(self, visitor_id: str) -> VisitorPreferences:
        return VisitorPreferences(self.local_store(visitor_id))

    def dispatcher(self, cart: CartService, opener: Optional[Callable[[str], Any]] = None) -> CheckoutDispatcher:
        return CheckoutDispatcher(self.shop, cart, opener=opener)


def build_services(
    db_path: Optional[str] = None,
    local_store_path: Optional[str] = None,
    export_dir: Optional[str] = None,
) -> Services:
    store = RemoteStore(db_path or settings.db_path)
    return Services(
        store=store,
        shop=ShopService(store),
        auth=AuthService(settings.admin_email, settings.admin_password),
        renderer=OrderDocumentRenderer(export_dir=export_dir or settings.export_dir),
        local_backend=SqliteBackend(local_store_path or settings.local_store_path),
    )
