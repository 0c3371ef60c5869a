from __future__ import annotations

import httpx
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request
from fastapi import UploadFile
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, PlainTextResponse, RedirectResponse,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
import redis.asyncio as redis
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .banners import MAX_BANNER_BYTES, BannerStore
from .config import PACKAGE_DIR, Settings
from .digiflazz import DigiflazzClient
from .errors import (
    NotFound, OrderNotFound, ProductNotFound, StoreError, UpstreamFailure,
    ValidationFailure,
)
from .helpers import ct_equal, to_iso
from .infra.sql import make_async_engine
from .logs import configure_logging, get_logger
from .model.catalog import ProductStore
from .model.db import Base, Order
from .model.orders import OrderStore
from .model.pricecache import PriceCache, new_price_cache
from .notify import Fonnte, Notifier, Wablas
from .orderflow import OrderFlow
from .payments import MidtransSnap, MockPay, PaymentAdapter
from .pricing import group_denominations
from .tasks import TaskRunner

log = get_logger("server")

templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))
templates.env.filters["iso"] = to_iso

SITE_NAME = "GassTopUp"
CHECKOUT_ERROR = "Terjadi kesalahan, silakan coba beberapa saat lagi."
MOCK_KINDS = ("settlement", "pending", "deny", "cancel", "expire")


# ----------------------------
# Dependencies
# ----------------------------
def get_flow(request: Request) -> OrderFlow:
    return request.app.state.flow


def get_orders(request: Request) -> OrderStore:
    return request.app.state.orders


def get_products(request: Request) -> ProductStore:
    return request.app.state.products


def get_prices(request: Request) -> PriceCache:
    return request.app.state.prices


def get_banners(request: Request) -> BannerStore:
    return request.app.state.banners


def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        # preserve where we wanted to go
        dest = request.url.path
        raise HTTPException(status_code=HTTP_303_SEE_OTHER,
                            detail="redirect to login",
                            headers={"Location": f"/admin/login?next={dest}"})


def order_json(order: Order) -> dict:
    return {
        "trx_id": order.trx_id,
        "product_id": order.product_id,
        "product": order.product,
        "sku": order.sku,
        "amount": order.amount,
        "payment": order.payment,
        "payment_status": order.payment_status,
        "fulfillment_status": order.fulfillment_status,
        "created_at": to_iso(order.created_at),
    }


def _render(request: Request, name: str, ctx: dict, status_code: int = 200):
    return templates.TemplateResponse(
        request, name, {"site_name": SITE_NAME, **ctx},
        status_code=status_code,
    )


def _back_to_products() -> RedirectResponse:
    return RedirectResponse(url="/admin/products",
                            status_code=HTTP_303_SEE_OTHER)


def _back_to_banners() -> RedirectResponse:
    return RedirectResponse(url="/admin/banners",
                            status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# App factory
# ----------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    http: Optional[httpx.AsyncClient] = None,
    r: Optional[redis.Redis] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    engine, SessionAsync = make_async_engine(settings.database_url)
    if http is None:
        http = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            limits=httpx.Limits(max_connections=100,
                                max_keepalive_connections=20),
        )
    if r is None and settings.pricecache_backend == "redis":
        r = redis.from_url(
            settings.redis_url,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )

    digiflazz = DigiflazzClient(
        http,
        username=settings.digiflazz_username,
        dev_key=settings.digiflazz_dev_key,
        base_url=settings.digiflazz_base_url,
        webhook_secret=settings.digiflazz_webhook_secret,
    )
    gateway: PaymentAdapter
    if settings.payment_backend == "mock":
        gateway = MockPay(settings.mock_secret, settings.app_base_url)
    else:
        gateway = MidtransSnap(
            http,
            server_key=settings.midtrans_server_key,
            is_production=settings.midtrans_is_production,
        )
    notifier = Notifier(
        [
            Fonnte(http, settings.fonnte_token),
            Wablas(http, settings.wablas_token, settings.wablas_base_url),
        ],
        invoice_base_url=settings.app_base_url,
        country_code=settings.notify_country_code,
    )
    prices = new_price_cache(
        digiflazz.price_list,
        backend=settings.pricecache_backend,
        ttl_seconds=settings.pricecache_ttl_seconds,
        r=r,
    )
    orders = OrderStore(SessionAsync)
    runner = TaskRunner()

    app = FastAPI(title=SITE_NAME, default_response_class=ORJSONResponse)
    app.state.settings = settings
    app.state.engine = engine
    app.state.http = http
    app.state.redis = r
    app.state.gateway = gateway
    app.state.digiflazz = digiflazz
    app.state.prices = prices
    app.state.orders = orders
    app.state.products = ProductStore(SessionAsync)
    app.state.banners = BannerStore(settings.banner_dir)
    app.state.runner = runner
    app.state.flow = OrderFlow(
        orders=orders,
        prices=prices,
        gateway=gateway,
        digiflazz=digiflazz,
        notifier=notifier,
        runner=runner,
        app_base_url=settings.app_base_url,
        callback_policy=settings.fulfillment_callback_policy,
    )

    app.mount("/static/banners", StaticFiles(directory=settings.banner_dir),
              name="banners")
    app.mount("/static", StaticFiles(directory=PACKAGE_DIR / "static"),
              name="static")
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _db_init():
        await init_db(app)
        log.info("startup", payment=gateway.__class__.__name__,
                 pricecache=settings.pricecache_backend,
                 callback_policy=settings.fulfillment_callback_policy)

    @app.on_event("shutdown")
    async def _drain_tasks():
        await runner.drain()

    @app.on_event("shutdown")
    async def _http_client_stop():
        await http.aclose()

    @app.on_event("shutdown")
    async def _redis_stop():
        if r is not None:
            await r.aclose()

    @app.on_event("shutdown")
    async def _engine_stop():
        await engine.dispose()

    register_storefront(app)
    register_webhooks(app)
    register_mockpay(app)
    register_admin(app)
    return app


async def init_db(app: FastAPI) -> None:
    # Create SQL tables for products and orders
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ----------------------------
# Storefront
# ----------------------------
def register_storefront(app: FastAPI) -> None:

    @app.get("/", response_class=HTMLResponse)
    async def catalog_page(
        request: Request, category: Optional[str] = None,
        products: ProductStore = Depends(get_products),
        banners: BannerStore = Depends(get_banners),
    ):
        return _render(request, "index.html", {
            "all_products": await products.list_active(category),
            "popular_products": await products.list_popular(),
            "categories": await products.list_categories(),
            "selected_category": category or "Semua",
            "banners": [banners.url(n) for n in banners.list()],
        })

    @app.get("/order/{brand}", response_class=HTMLResponse)
    async def order_page(
        request: Request, brand: str,
        products: ProductStore = Depends(get_products),
        prices: PriceCache = Depends(get_prices),
    ):
        product = await products.get_by_brand(brand)
        if product is None or not product.is_active:
            raise ProductNotFound()
        entries = await prices.get()
        groups, group_names = group_denominations(
            e for e in entries if e.get("brand") == product.brand
        )
        return _render(request, "order.html", {
            "product": product,
            "groups": groups,
            "group_names": group_names,
            "unavailable": not entries,
        })

    @app.post("/order")
    async def submit_order(
        productId: str = Form(...),
        phone: str = Form(...),
        product: str = Form(...),
        flow: OrderFlow = Depends(get_flow),
    ):
        try:
            redirect_url = await flow.place_order(
                productId.strip(), phone.strip(), product
            )
        except NotFound:
            raise
        except (UpstreamFailure, SQLAlchemyError):
            log.error("checkout.failed", product=product, exc_info=True)
            return PlainTextResponse(CHECKOUT_ERROR, status_code=500)
        return RedirectResponse(url=redirect_url,
                                status_code=HTTP_303_SEE_OTHER)

    @app.get("/invoice/{trx_id}", response_class=HTMLResponse)
    async def invoice_page(
        request: Request, trx_id: str,
        orders: OrderStore = Depends(get_orders),
    ):
        order = await orders.get(trx_id)
        if order is None:
            raise OrderNotFound()
        return _render(request, "invoice.html", {"order": order})

    @app.get("/cek", response_class=HTMLResponse)
    async def status_lookup_page(request: Request):
        return _render(request, "cek.html", {"order": None, "trx_id": None})

    @app.get("/cek-pesanan", response_class=HTMLResponse)
    async def status_lookup(
        request: Request, trxId: str = "",
        orders: OrderStore = Depends(get_orders),
    ):
        order = await orders.get(trxId.strip()) if trxId.strip() else None
        return _render(request, "cek.html", {"order": order, "trx_id": trxId})

    # polled by the invoice page
    @app.get("/api/orders/{trx_id}")
    async def get_order(trx_id: str, orders: OrderStore = Depends(get_orders)):
        order = await orders.get(trx_id)
        if order is None:
            raise HTTPException(404, detail="order not found")
        return order_json(order)


# ----------------------------
# Webhooks
# ----------------------------
def register_webhooks(app: FastAPI) -> None:

    @app.post("/midtrans-notification")
    async def midtrans_notification(
        request: Request, flow: OrderFlow = Depends(get_flow),
    ):
        payload = await request.body()
        headers = dict(request.headers)
        try:
            await flow.handle_payment_notification(payload, headers)
        except ValidationFailure as e:
            log.warning("payment.notification_rejected", error=e.message)
            return PlainTextResponse(e.message, status_code=400)
        except OrderNotFound as e:
            return PlainTextResponse(e.message, status_code=404)
        except (StoreError, SQLAlchemyError):
            log.error("payment.notification_error", exc_info=True)
            return PlainTextResponse("Error processing notification",
                                     status_code=500)
        return PlainTextResponse("OK")

    @app.post("/digiflazz-callback")
    async def digiflazz_callback(
        request: Request, flow: OrderFlow = Depends(get_flow),
    ):
        payload = await request.body()
        headers = dict(request.headers)
        try:
            await flow.handle_fulfillment_callback(payload, headers)
        except ValidationFailure as e:
            return PlainTextResponse(e.message, status_code=400)
        except (StoreError, SQLAlchemyError):
            log.error("fulfillment.callback_error", exc_info=True)
            return ORJSONResponse({"data": False}, status_code=500)
        return {"data": True}


# ----------------------------
# MockPay UI (development gateway)
# ----------------------------
def register_mockpay(app: FastAPI) -> None:

    def get_mockpay(request: Request) -> MockPay:
        gateway = request.app.state.gateway
        if not isinstance(gateway, MockPay):
            raise HTTPException(404, detail="mockpay disabled")
        return gateway

    @app.get("/mockpay/{trx_id}", response_class=HTMLResponse)
    async def mockpay_screen(
        request: Request, trx_id: str,
        mock: MockPay = Depends(get_mockpay),
        orders: OrderStore = Depends(get_orders),
    ):
        order = await orders.get(trx_id)
        if order is None:
            raise OrderNotFound()
        return _render(request, "mockpay.html", {
            "order": order, "kinds": MOCK_KINDS,
        })

    @app.post("/mockpay/{trx_id}/emit")
    async def mockpay_emit(
        request: Request, trx_id: str,
        t: str = Form(...),
        mock: MockPay = Depends(get_mockpay),
        orders: OrderStore = Depends(get_orders),
    ):
        if t not in MOCK_KINDS:
            raise HTTPException(400, detail="invalid kind")
        order = await orders.get(trx_id)
        if order is None:
            raise OrderNotFound()

        payload, headers = mock.build_notification(order.trx_id,
                                                   order.amount, t)
        settings: Settings = request.app.state.settings
        http: httpx.AsyncClient = request.app.state.http
        try:
            await http.post(settings.mock_webhook_url, content=payload,
                            headers=headers)
        except httpx.HTTPError:
            # the buyer can press the button again
            log.warning("mockpay.delivery_failed", trx_id=trx_id,
                        exc_info=True)
        return RedirectResponse(url=f"/invoice/{trx_id}",
                                status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# Admin
# ----------------------------
def register_admin(app: FastAPI) -> None:
    settings: Settings = app.state.settings

    @app.get("/admin/login", response_class=HTMLResponse)
    async def admin_login_get(request: Request,
                              next: str = "/admin/dashboard"):
        return _render(request, "admin_login.html",
                       {"next": next, "error": None})

    @app.post("/admin/login", response_class=HTMLResponse)
    async def admin_login_post(
        request: Request,
        username: str = Form(...),
        password: str = Form(...),
        next: str = Form("/admin/dashboard"),
    ):
        ok_user = ct_equal(username.strip(), settings.admin_username)
        ok_pass = ct_equal(password, settings.admin_password)
        if ok_user and ok_pass:
            request.session["admin_user"] = username.strip()
            # only local paths
            dest = next if next.startswith("/") and not next.startswith("//") \
                else "/admin/dashboard"
            return RedirectResponse(url=dest, status_code=HTTP_303_SEE_OTHER)
        log.warning("admin.login_failed", username=username.strip())
        return _render(request, "admin_login.html",
                       {"next": next, "error": "Username atau Password salah!"},
                       status_code=401)

    @app.get("/admin/logout")
    async def admin_logout(request: Request):
        request.session.clear()
        return RedirectResponse(url="/admin/login",
                                status_code=HTTP_303_SEE_OTHER)

    admin = [Depends(require_admin)]

    @app.get("/admin", dependencies=admin)
    async def admin_root():
        return RedirectResponse(url="/admin/dashboard",
                                status_code=HTTP_303_SEE_OTHER)

    @app.get("/admin/dashboard", response_class=HTMLResponse,
             dependencies=admin)
    async def admin_dashboard(
        request: Request, orders: OrderStore = Depends(get_orders),
    ):
        return _render(request, "admin_dashboard.html",
                       {"orders": await orders.list_recent(500)})

    @app.get("/admin/api/orders", dependencies=admin)
    async def api_admin_orders(
        limit: int = 200, orders: OrderStore = Depends(get_orders),
    ):
        items = [order_json(o) for o in await orders.list_recent(limit)]
        return {"items": items, "limit": limit}

    @app.post("/admin/sync-digiflazz", dependencies=admin)
    async def admin_sync(
        products: ProductStore = Depends(get_products),
        prices: PriceCache = Depends(get_prices),
    ):
        entries = await prices.force_refresh()
        if not entries:
            return PlainTextResponse("price list unavailable", status_code=502)
        count = await products.sync_from_price_list(entries)
        log.info("catalog.synced", brands=count)
        return _back_to_products()

    @app.get("/admin/products", response_class=HTMLResponse,
             dependencies=admin)
    async def admin_products(
        request: Request, products: ProductStore = Depends(get_products),
    ):
        return _render(request, "admin_products.html",
                       {"products": await products.list_all()})

    @app.post("/admin/products/toggle-active/{product_id}",
              dependencies=admin)
    async def toggle_active(product_id: int,
                            products: ProductStore = Depends(get_products)):
        await products.toggle_active(product_id)
        return _back_to_products()

    @app.post("/admin/products/toggle-popular/{product_id}",
              dependencies=admin)
    async def toggle_popular(product_id: int,
                             products: ProductStore = Depends(get_products)):
        await products.toggle_popular(product_id)
        return _back_to_products()

    @app.post("/admin/products/update-image/{product_id}",
              dependencies=admin)
    async def update_image(product_id: int, imageUrl: str = Form(""),
                           products: ProductStore = Depends(get_products)):
        await products.set_image(product_id, imageUrl)
        return _back_to_products()

    @app.get("/admin/banners", response_class=HTMLResponse,
             dependencies=admin)
    async def admin_banners(request: Request,
                            banners: BannerStore = Depends(get_banners)):
        return _render(request, "admin_banners.html", {
            "banners": [(n, banners.url(n)) for n in banners.list()],
        })

    @app.post("/admin/banners", dependencies=admin)
    async def upload_banner(banner: UploadFile = File(...),
                            banners: BannerStore = Depends(get_banners)):
        if banner.size is not None and banner.size > MAX_BANNER_BYTES:
            raise ValidationFailure("File terlalu besar")
        # one byte over the limit is enough for save() to reject it
        data = await banner.read(MAX_BANNER_BYTES + 1)
        name = banners.save(banner.filename or "", data)
        log.info("banner.uploaded", name=name)
        return _back_to_banners()

    @app.post("/admin/banners/delete/{name}", dependencies=admin)
    async def delete_banner(name: str,
                            banners: BannerStore = Depends(get_banners)):
        banners.delete(name)
        log.info("banner.deleted", name=name)
        return _back_to_banners()

    @app.get("/admin/test-webhook", response_class=HTMLResponse,
             dependencies=admin)
    async def admin_test_webhook(request: Request):
        return _render(request, "admin_test_webhook.html", {})

    @app.get("/admin/withdraw", response_class=HTMLResponse,
             dependencies=admin)
    async def admin_withdraw_page(request: Request):
        return _render(request, "admin_withdraw.html", {"message": None})

    # stub: nothing is paid out, the request is only logged
    @app.post("/admin/withdraw", response_class=HTMLResponse,
              dependencies=admin)
    async def admin_withdraw(
        request: Request,
        amount: int = Form(...),
        bank: str = Form(""),
        account: str = Form(""),
    ):
        log.info("admin.withdraw_requested", amount=amount, bank=bank,
                 account=account, admin=request.session.get("admin_user"))
        return _render(request, "admin_withdraw.html",
                       {"message": "Permintaan penarikan diterima."})


app = create_app()
