# api/server.py
# ============================================================================
# STONE MODEL STOREFRONT: FASTAPI SERVER
# ============================================================================
# Checkout, Stripe webhook and token-gated download endpoints plus the
# public catalog, with CORS, health probes and timing headers.
# ============================================================================

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from config import Settings, get_settings
from pipeline.agents import DeliveryAgent, FulfillmentAgent, PaymentGateway
from pipeline.errors import StorefrontError
from pipeline.tokens import DownloadTokenIssuer
from schemas import CatalogFilter, CreatePaymentIntentRequest, SortOrder
from services import (
    IEmailSender,
    IPaymentProcessor,
    LoggingEmailSender,
    SendGridEmailSender,
    StripePaymentProcessor,
)
from storage import (
    IAssetStore,
    ICatalogRepository,
    InMemoryCatalogRepository,
    InMemoryPurchaseLedger,
    IPurchaseLedger,
    LocalAssetStore,
    PostgresPurchaseLedger,
    S3AssetStore,
)

VERSION = "1.0.0"
START_TIME = datetime.now(timezone.utc)

logger = structlog.get_logger(component="server")


# ============================================================================
# LOGGING
# ============================================================================

def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog for the whole process."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# ============================================================================
# COMPONENT WIRING
# ============================================================================

class Storefront:
    """Every component the routes need, built once per app"""

    def __init__(
        self,
        settings: Settings,
        catalog: ICatalogRepository,
        ledger: IPurchaseLedger,
        processor: IPaymentProcessor,
        email_sender: IEmailSender,
        assets: IAssetStore,
        issuer: DownloadTokenIssuer,
    ):
        self.settings = settings
        self.catalog = catalog
        self.ledger = ledger
        self.processor = processor
        self.email_sender = email_sender
        self.assets = assets
        self.issuer = issuer

        self.fulfillment = FulfillmentAgent(
            issuer=issuer,
            ledger=ledger,
            email_sender=email_sender,
            public_base_url=settings.public_base_url,
            max_downloads=settings.max_downloads,
        )
        self.gateway = PaymentGateway(
            catalog=catalog,
            processor=processor,
            fulfillment=self.fulfillment,
        )
        self.delivery = DeliveryAgent(
            catalog=catalog,
            issuer=issuer,
            ledger=ledger,
            assets=assets,
            max_downloads=settings.max_downloads,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "Storefront":
        """Build the production components, letting callers swap any of them"""
        components = {
            "catalog": overrides.pop("catalog", None) or InMemoryCatalogRepository(),
            "ledger": overrides.pop("ledger", None) or _build_ledger(settings),
            "processor": overrides.pop("processor", None) or StripePaymentProcessor(
                api_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                tolerance=settings.stripe_webhook_tolerance,
            ),
            "email_sender": overrides.pop("email_sender", None) or _build_email_sender(settings),
            "assets": overrides.pop("assets", None) or _build_asset_store(settings),
            "issuer": overrides.pop("issuer", None) or DownloadTokenIssuer(
                secret=settings.download_token_secret,
                ttl_seconds=settings.download_token_ttl_seconds,
            ),
        }
        if overrides:
            raise TypeError(f"Unknown storefront components: {sorted(overrides)}")
        return cls(settings=settings, **components)


def _build_ledger(settings: Settings) -> IPurchaseLedger:
    if settings.ledger_backend == "postgres":
        return PostgresPurchaseLedger(
            settings.database_url,
            min_size=settings.db_min_pool_size,
            max_size=settings.db_max_pool_size,
        )
    return InMemoryPurchaseLedger()


def _build_email_sender(settings: Settings) -> IEmailSender:
    if settings.sendgrid_api_key:
        return SendGridEmailSender(settings.sendgrid_api_key, settings.email_from)
    return LoggingEmailSender()


def _build_asset_store(settings: Settings) -> IAssetStore:
    if settings.asset_backend == "s3":
        return S3AssetStore(settings.s3_bucket, region=settings.aws_region)
    return LocalAssetStore(settings.asset_root)


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    uptime_seconds: float
    environment: str
    ledger_backend: str
    asset_backend: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(settings: Optional[Settings] = None, **overrides: Any) -> FastAPI:
    """
    Build the storefront app.

    ``overrides`` replace individual components (catalog, ledger, processor,
    email_sender, assets, issuer); tests use this to inject fakes.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    storefront = Storefront.from_settings(settings, **overrides)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "storefront_starting",
            environment=settings.environment,
            ledger_backend=settings.ledger_backend,
            asset_backend=settings.asset_backend,
        )
        await storefront.ledger.initialize()
        yield
        await storefront.ledger.close()
        logger.info("storefront_stopped")

    app = FastAPI(
        title="Stone Model Storefront",
        description="Checkout and token-gated delivery of 3D stone scans",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storefront = storefront

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Download-Count", "X-Download-Limit"],
    )

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing and request ID headers"""
        request_id = str(uuid4())[:8]
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id
        return response

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.info("request_invalid", path=request.url.path, errors=details)
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request data", "details": details},
        )

    # ========================================================================
    # HEALTH ENDPOINTS
    # ========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint"""
        return HealthResponse(
            status="healthy",
            version=VERSION,
            uptime_seconds=(datetime.now(timezone.utc) - START_TIME).total_seconds(),
            environment=settings.environment,
            ledger_backend=settings.ledger_backend,
            asset_backend=settings.asset_backend,
        )

    @app.get("/ready")
    async def readiness_check():
        """Kubernetes readiness probe"""
        return {"ready": True}

    @app.get("/live")
    async def liveness_check():
        """Kubernetes liveness probe"""
        return {"live": True}

    # ========================================================================
    # CATALOG ENDPOINTS
    # ========================================================================

    @app.get("/api/models")
    async def list_models(
        search: Optional[str] = None,
        min_price: int = Query(default=0, ge=0),
        max_price: Optional[int] = Query(default=None, ge=0),
        sort: SortOrder = SortOrder.NEWEST,
    ):
        """Published gallery listing"""
        models = await storefront.catalog.list(CatalogFilter(
            search=search,
            min_price=min_price,
            max_price=max_price,
            sort=sort,
        ))
        total = len(await storefront.catalog.list())
        return {
            "count": len(models),
            "total": total,
            "models": [m.model_dump(by_alias=True, mode="json") for m in models],
        }

    @app.get("/api/models/{model_id}")
    async def get_model(model_id: str):
        product = await storefront.catalog.get(model_id)
        if product is None or not product.published:
            return _error(404, "Model not found")
        return product.model_dump(by_alias=True, mode="json")

    @app.get("/api/fulfillment/partners")
    async def list_partners(model_id: Optional[str] = None):
        """CNC fabrication partners, priced for a model when one is given"""
        partners = []
        for partner in storefront.gateway.list_partners():
            entry = partner.model_dump(by_alias=True)
            if model_id is not None:
                entry["price"] = await storefront.gateway.quote(model_id, partner.id)
            partners.append(entry)
        return {"partners": partners}

    # ========================================================================
    # CHECKOUT ENDPOINTS
    # ========================================================================

    @app.post("/api/stripe")
    async def create_payment_intent(request: CreatePaymentIntentRequest):
        """Create a Stripe Payment Intent for one model"""
        try:
            result = await storefront.gateway.create_payment_intent(request)
        except StorefrontError:
            raise
        except Exception as e:
            logger.error("payment_intent_route_failed", error=str(e), exc_info=True)
            return _error(500, "Failed to create payment intent")
        return result.model_dump(by_alias=True)

    @app.post("/api/webhooks/stripe")
    async def stripe_webhook(request: Request):
        """
        Stripe webhook handler for payment events.
        The raw body is verified before anything parses it.
        """
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        try:
            return await storefront.gateway.process_webhook(payload, signature)
        except StorefrontError:
            raise
        except Exception as e:
            logger.error("stripe_webhook_route_failed", error=str(e), exc_info=True)
            return _error(500, "Webhook handler failed")

    # ========================================================================
    # DOWNLOAD ENDPOINTS
    # ========================================================================

    @app.get("/download/{model_id}")
    async def download_model(model_id: str, token: Optional[str] = None):
        """Token-gated model download"""
        try:
            result = await storefront.delivery.fetch_download(model_id, token)
        except StorefrontError:
            raise
        except Exception as e:
            logger.error(
                "download_failed",
                model_id=model_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return _error(500, "Failed to download file")

        return Response(
            content=result.content,
            media_type=result.content_type,
            headers=result.headers(),
        )

    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "api.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
