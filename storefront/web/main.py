from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Iterator, List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from storefront.constants import CITIES, SECTORS
from storefront.container import Services, build_services
from storefront.models import CompanyInfo, OrderSnapshot, Product, ProductVariant
from storefront.services.cart import CartService
from storefront.services.snapshot import build_snapshot
from storefront.storage.local_store import LocalStore
from storefront.utils.formatters import money

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

VISITOR_COOKIE = "visitor_id"
ADMIN_COOKIE = "admin_session"
PENDING_ORDER_KEY = "pendingOrder"

app = FastAPI(title="Storefront")

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["money"] = money


@app.on_event("startup")
async def _startup() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    await app.state.services.shop.initialize()


@app.middleware("http")
async def _visitor(request: Request, call_next):
    visitor_id = request.cookies.get(VISITOR_COOKIE)
    is_new = not visitor_id
    request.state.visitor_id = visitor_id or uuid.uuid4().hex
    response = await call_next(request)
    if is_new:
        response.set_cookie(VISITOR_COOKIE, request.state.visitor_id, max_age=60 * 60 * 24 * 365, httponly=True)
    return response


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_local_store(request: Request) -> LocalStore:
    return get_services(request).local_store(request.state.visitor_id)


def get_cart(request: Request) -> Iterator[CartService]:
    cart = get_services(request).cart(request.state.visitor_id)
    try:
        yield cart
    finally:
        cart.close()


def _render(request: Request, name: str, ctx: dict[str, Any], status_code: int = 200) -> HTMLResponse:
    services = get_services(request)
    base = {
        "request": request,
        "company": services.shop.company_info,
        "store_error": services.shop.initialization_error,
        "is_admin": _is_admin(request),
        "message": request.query_params.get("msg", ""),
    }
    base.update(ctx)
    return templates.TemplateResponse(request, name, base, status_code=status_code)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


def _local_url(url: str, default: str = "/") -> str:
    return url if url.startswith("/") and not url.startswith("//") else default


def _pending_snapshot(store: LocalStore) -> Optional[OrderSnapshot]:
    raw = store.get(PENDING_ORDER_KEY)
    if not raw:
        return None
    try:
        return OrderSnapshot.from_dict(raw)
    except (KeyError, TypeError, ValueError, ArithmeticError):
        logger.warning("dropping unreadable pending order")
        store.remove(PENDING_ORDER_KEY)
        return None


# ---------------- catalog ----------------

@app.get("/", response_class=HTMLResponse)
def index(request: Request, q: str = "", cart: CartService = Depends(get_cart)):
    services = get_services(request)
    if services.shop.initialization_error:
        return _render(request, "error.html", {"error": services.shop.initialization_error}, status_code=503)

    prefs = services.preferences(request.state.visitor_id)
    try:
        ctx = {
            "products": services.shop.search_products(q),
            "query": q,
            "cart_count": cart.count(),
            "show_welcome": not prefs.seen_welcome,
            "city": prefs.city,
            "sector": prefs.sector,
            "cities": CITIES,
            "sectors": SECTORS,
            "load_error": services.shop.error,
        }
    finally:
        prefs.close()
    return _render(request, "index.html", ctx)


@app.post("/welcome")
def welcome(request: Request, city: str = Form(""), sector: str = Form("")):
    prefs = get_services(request).preferences(request.state.visitor_id)
    try:
        prefs.dismiss_welcome(city, sector)
    finally:
        prefs.close()
    return _redirect("/")


# ---------------- cart ----------------

@app.get("/cart", response_class=HTMLResponse)
def cart_view(request: Request, cart: CartService = Depends(get_cart)):
    return _render(request, "cart.html", {"items": cart.items, "total": cart.total()})


@app.post("/cart/add")
def cart_add(
    request: Request,
    product_id: str = Form(...),
    variant_id: str = Form(...),
    quantity: int = Form(1),
    next_url: str = Form("/cart", alias="next"),
    cart: CartService = Depends(get_cart),
):
    item = get_services(request).shop.line_item_for(product_id, variant_id)
    if item is None:
        return _redirect("/?msg=Product not found")
    if quantity < 1:
        return _redirect("/?msg=Quantity must be at least 1")
    cart.add_item(item, quantity)
    return _redirect(_local_url(next_url, "/cart"))


@app.post("/cart/update")
def cart_update(
    product_id: str = Form(...),
    variant_id: str = Form(...),
    quantity: int = Form(...),
    cart: CartService = Depends(get_cart),
):
    cart.update_quantity(product_id, variant_id, quantity)
    return _redirect("/cart")


@app.post("/cart/remove")
def cart_remove(
    product_id: str = Form(...),
    variant_id: str = Form(...),
    cart: CartService = Depends(get_cart),
):
    cart.remove_item(product_id, variant_id)
    return _redirect("/cart")


@app.post("/cart/clear")
def cart_clear(cart: CartService = Depends(get_cart)):
    cart.clear()
    return _redirect("/cart")


# ---------------- order ----------------

@app.post("/order/preview")
async def order_generate(
    request: Request,
    cart: CartService = Depends(get_cart),
    store: LocalStore = Depends(get_local_store),
):
    if cart.is_empty():
        return _redirect("/cart?msg=Your cart is empty")

    shop = get_services(request).shop
    if shop.company_info is None:
        await shop.load()
    if shop.company_info is None:
        return _render(request, "loading.html", {}, status_code=503)

    snapshot = build_snapshot(cart.items, shop.company_info)
    store.set(PENDING_ORDER_KEY, snapshot.to_dict())
    return _redirect("/order/preview")


@app.get("/order/preview", response_class=HTMLResponse)
def order_preview(request: Request, store: LocalStore = Depends(get_local_store)):
    snapshot = _pending_snapshot(store)
    if snapshot is None:
        return _redirect("/cart")
    return _render(request, "order_preview.html", {"order": snapshot, "error": ""})


@app.get("/order/pdf")
def order_pdf(request: Request, inline: int = 0, store: LocalStore = Depends(get_local_store)):
    snapshot = _pending_snapshot(store)
    if snapshot is None:
        return _redirect("/cart")

    renderer = get_services(request).renderer
    data = renderer.build_pdf(snapshot)
    if data is None:
        return _render(
            request,
            "order_preview.html",
            {"order": snapshot, "error": "The PDF could not be generated. You can still send the order."},
            status_code=500,
        )
    disposition = "inline" if inline else "attachment"
    filename = quote(renderer.filename(snapshot))
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f"{disposition}; filename*=UTF-8''{filename}"},
    )


@app.post("/order/cancel")
def order_cancel(store: LocalStore = Depends(get_local_store)):
    store.remove(PENDING_ORDER_KEY)
    return _redirect("/cart")


@app.post("/order/send", response_class=HTMLResponse)
async def order_send(
    request: Request,
    cart: CartService = Depends(get_cart),
    store: LocalStore = Depends(get_local_store),
):
    snapshot = _pending_snapshot(store)
    if snapshot is None:
        return _redirect("/cart")

    # the buyer's browser follows the handoff link itself
    dispatcher = get_services(request).dispatcher(cart, opener=lambda url: None)
    ok, payload = await dispatcher.send_order(list(snapshot.items), snapshot.total, snapshot.company_info)
    if not ok:
        return _render(request, "order_preview.html", {"order": snapshot, "error": payload}, status_code=502)

    store.remove(PENDING_ORDER_KEY)
    return _render(request, "order_sent.html", {"order_id": payload["order_id"], "handoff_url": payload["handoff_url"]})


# ---------------- admin ----------------

def _is_admin(request: Request) -> bool:
    return get_services(request).auth.is_authenticated(request.cookies.get(ADMIN_COOKIE))


def _to_login() -> RedirectResponse:
    return _redirect("/admin/login")


@app.get("/admin/login", response_class=HTMLResponse)
def admin_login_get(request: Request):
    return _render(request, "admin_login.html", {"error": ""})


@app.post("/admin/login")
def admin_login_post(request: Request, email: str = Form(...), password: str = Form(...)):
    ok, payload = get_services(request).auth.sign_in(email, password)
    if not ok:
        return _render(request, "admin_login.html", {"error": payload}, status_code=401)
    response = _redirect("/admin/orders")
    response.set_cookie(ADMIN_COOKIE, payload, httponly=True, samesite="lax")
    return response


@app.post("/admin/logout")
def admin_logout(request: Request):
    get_services(request).auth.sign_out(request.cookies.get(ADMIN_COOKIE))
    response = _redirect("/")
    response.delete_cookie(ADMIN_COOKIE)
    return response


@app.get("/admin/orders", response_class=HTMLResponse)
async def admin_orders(request: Request):
    if not _is_admin(request):
        return _to_login()
    shop = get_services(request).shop
    await shop.load()
    return _render(request, "admin_orders.html", {"orders": shop.orders})


@app.post("/admin/orders/{order_id}/confirm")
async def admin_order_confirm(request: Request, order_id: str):
    if not _is_admin(request):
        return _to_login()
    ok, payload = await get_services(request).shop.confirm_order(order_id)
    msg = "Order confirmed" if ok else payload
    return _redirect(f"/admin/orders?msg={quote(msg)}")


def _parse_number(raw: str) -> Any:
    s = (raw or "").strip().replace(",", ".")
    try:
        v = float(s)
    except ValueError:
        return s
    return int(v) if v.is_integer() and "." not in s else v


@app.get("/admin/products", response_class=HTMLResponse)
def admin_products(request: Request, edit: str = ""):
    if not _is_admin(request):
        return _to_login()
    shop = get_services(request).shop
    editing = next((p for p in shop.products if p.id == edit), None)
    if editing is None:
        editing = Product(id="new_", name="", variants=[ProductVariant(id="var_", name="", price=0, stock=0)])
    return _render(request, "admin_products.html", {"products": shop.products, "editing": editing, "errors": None})


@app.post("/admin/products/save")
async def admin_product_save(
    request: Request,
    product_id: str = Form("new_"),
    name: str = Form(""),
    description: str = Form(""),
    image_url: str = Form(""),
    variant_id: List[str] = Form([]),
    variant_name: List[str] = Form([]),
    variant_price: List[str] = Form([]),
    variant_stock: List[str] = Form([]),
):
    if not _is_admin(request):
        return _to_login()

    variants = [
        ProductVariant(id=vid, name=vname, price=_parse_number(vprice), stock=_parse_number(vstock))
        for vid, vname, vprice, vstock in zip(variant_id, variant_name, variant_price, variant_stock)
        if vname.strip() or vprice.strip() or vstock.strip()
    ]
    product = Product(id=product_id, name=name, description=description, image_url=image_url, variants=variants)

    shop = get_services(request).shop
    ok, payload = await shop.save_product(product)
    if ok:
        return _redirect(f"/admin/products?msg={quote('Product saved')}")
    if isinstance(payload, str):
        return _redirect(f"/admin/products?msg={quote(payload)}")
    return _render(
        request,
        "admin_products.html",
        {"products": shop.products, "editing": product, "errors": payload},
        status_code=422,
    )


@app.post("/admin/products/{product_id}/delete")
async def admin_product_delete(request: Request, product_id: str):
    if not _is_admin(request):
        return _to_login()
    ok, payload = await get_services(request).shop.delete_product(product_id)
    msg = "Product deleted" if ok else payload
    return _redirect(f"/admin/products?msg={quote(msg)}")


@app.get("/admin/company", response_class=HTMLResponse)
def admin_company_get(request: Request):
    if not _is_admin(request):
        return _to_login()
    return _render(request, "admin_company.html", {"error": ""})


@app.post("/admin/company")
async def admin_company_post(
    request: Request,
    name: str = Form(""),
    address: str = Form(""),
    phone: str = Form(""),
    email: str = Form(""),
):
    if not _is_admin(request):
        return _to_login()
    if not name.strip():
        return _render(request, "admin_company.html", {"error": "Store name is required."}, status_code=422)

    info = CompanyInfo(name=name.strip(), address=address.strip(), phone=phone.strip(), email=email.strip())
    ok, payload = await get_services(request).shop.update_company_info(info)
    if not ok:
        return _render(request, "admin_company.html", {"error": payload}, status_code=502)
    return _redirect(f"/admin/company?msg={quote('Company info saved')}")
