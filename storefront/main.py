# storefront/main.py
import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .db import close_pool
from .errors import ApiError, api_error_handler, validation_error_handler
from .logs import configure_logging
from .routes import admin, auth, author
from .routes import orders as orders_router
from .settings import settings

configure_logging()
logger = structlog.get_logger().bind(component="app")

app = FastAPI(title="Vague Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

app.include_router(orders_router.router)
app.include_router(admin.router)
app.include_router(author.router)
app.include_router(auth.router)


@app.get("/")
def root():
    return {"message": "Vague storefront API is running"}


@app.on_event("startup")
def _startup_check_config():
    missing = [
        name
        for name, value in (
            ("STRIPE_SECRET_KEY", settings.stripe_secret_key),
            ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
            ("RESEND_API_KEY", settings.resend_api_key),
            ("ADMIN_KEY", settings.admin_key),
        )
        if not value
    ]
    if missing:
        logger.warning("startup_config_incomplete", missing=missing, env=settings.app_env)
    logger.info("startup_complete", env=settings.app_env)


@app.on_event("shutdown")
async def _shutdown_close_pool():
    await close_pool()
