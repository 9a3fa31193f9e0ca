import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from app.core.config import settings
from app.routers import abandoned_carts, cart, coupons, orders
from app.services.activity_tracker import activity_tracker
from app.services.recovery_scheduler import recovery_scheduler

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Cart", "description": "Read and change the shopper's cart."},
    {
        "name": "Orders",
        "description": "Checkout pricing, gateway payments, webhooks and order management.",
    },
    {"name": "Coupons", "description": "Issue, list, deactivate and validate coupons."},
    {
        "name": "Abandoned Carts",
        "description": "Recovery campaign settings, journeys, manual passes and insights.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.RECOVERY_SCHEDULER_IN_API:
        recovery_scheduler.start()
    try:
        yield
    finally:
        await recovery_scheduler.stop()
        flushed = activity_tracker.flush()
        if flushed:
            logger.info("Flushed %d pending cart activity evaluation(s)", flushed)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Jewellery storefront API. "
        "Manage carts, checkout, payments, orders, coupons and "
        "abandoned cart recovery."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.middleware("http")
async def options_handler(request: Request, call_next):  # type: ignore[no-untyped-def]
    if request.method == "OPTIONS":
        origin = request.headers.get("origin", "*")
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Methods": "*",
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Max-Age": "86400",
            },
        )
    return await call_next(request)


app.include_router(cart.router, prefix="/cart", tags=["Cart"])
app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(coupons.router, prefix="/coupons", tags=["Coupons"])
app.include_router(
    abandoned_carts.router,
    prefix="/abandoned-carts",
    tags=["Abandoned Carts"],
)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "status": "running",
        "recovery_scheduler": "running" if recovery_scheduler.running else "stopped",
    }
