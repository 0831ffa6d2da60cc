from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging

from fulfillment.config import settings
from fulfillment.db.database import init_db
from fulfillment.errors import FulfillmentError
from fulfillment.api import health, orders, payments, inventory
from fulfillment.kafka.producer import event_producer
from fulfillment.services import get_expiration_sweeper
from fulfillment.services.expiration_sweeper import ExpirationScheduler

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Fulfillment Service...")
    await init_db()

    scheduler = None
    if settings.sweeper_enabled:
        scheduler = ExpirationScheduler(get_expiration_sweeper())
        scheduler.start()
        logger.info(
            f"Orders unpaid after {settings.order_expiration_minutes} minutes will be cancelled "
            f"(payment sessions expire after {settings.payment_session_expiry_minutes} minutes)"
        )
    else:
        logger.info("Expiration sweeper disabled")

    logger.info("Fulfillment Service started successfully")
    yield
    # Shutdown
    logger.info("Shutting down Fulfillment Service...")
    if scheduler is not None:
        scheduler.stop()
    event_producer.flush()


app = FastAPI(
    title="Fulfillment Service",
    description="""
    Orders, stock reservations and payments for the store.

    **Features:**
    - Checkout from a cart with atomic stock reservation
    - Stripe Checkout sessions and signed webhook reconciliation
    - Automatic expiry of unpaid orders
    - Guest checkout and claiming guest orders into an account
    - Kafka order events, Redis cache invalidation
    - Auth0 JWT authentication

    **Authentication:**
    Guests can check out, pay and look up their orders by email without a
    token. Everything else needs a JWT from Auth0:
    ```
    Authorization: Bearer <your-jwt-token>
    ```
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "https://shop.local",
    "https://admin.local",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS", "HEAD"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
    max_age=3600,
)


def custom_openapi():
    """Custom OpenAPI schema with JWT Bearer authentication"""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT token from Auth0. Format: Bearer <token>"
        }
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


@app.exception_handler(FulfillmentError)
async def fulfillment_exception_handler(request: Request, exc: FulfillmentError):
    """Map engine errors to their HTTP status and a stable error code"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler for unhandled exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and log them properly"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "internal_error"}
    )


# Validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors"""
    logger.warning(
        f"Validation error: {exc.errors()}",
        extra={
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc), "code": "validation_error"}
    )


def jsonable_errors(exc: RequestValidationError):
    # ctx may carry exception instances that JSONResponse cannot serialize
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]


# Include routers
app.include_router(health.router)
app.include_router(orders.router, prefix="/api")
app.include_router(payments.router, prefix="/api")
app.include_router(inventory.router, prefix="/api")


@app.get("/")
async def root():
    return {"service": settings.app_name, "version": "1.0.0"}
