import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.core.config import settings
from dashboard.database import engine, Base
# Ensure all models are loaded so create_all() knows what tables to build
from dashboard.models import Organization, Contact, MessageTemplate, Broadcast, Message, WebhookLog
from dashboard.middleware.tenancy import TenancyMiddleware
from dashboard.routes import broadcasts, settings as settings_routes, templates, webhooks, whatsapp
from dashboard.whatsapp.client import WhatsAppClient

# 1. Setup Logging for production tracking
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn")

# 2. Database Initialization
# Automatically creates tables in PostgreSQL/SQLite based on models.py
Base.metadata.create_all(bind=engine)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # One connection pool per process, handed to routes through deps.get_whatsapp_client
    async with httpx.AsyncClient(timeout=settings.META_HTTP_TIMEOUT) as http_client:
        app.state.whatsapp_client = WhatsAppClient(http_client)
        logger.info(f"WhatsApp client ready for {settings.graph_base_url}")
        yield

def create_app() -> FastAPI:
    app = FastAPI(
        title="WhatsApp Business Dashboard",
        description="Multi-tenant WhatsApp Cloud API messaging backend",
        version="1.0.0",
        lifespan=lifespan
    )

    # 3. Middleware
    # Registered last runs first: CORS wraps tenancy so rejections still carry CORS headers
    app.add_middleware(TenancyMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 4. Include Routers
    # Public: Meta webhook handshake and event delivery
    app.include_router(webhooks.router)

    # Organization-scoped
    app.include_router(settings_routes.router)
    app.include_router(whatsapp.router)
    app.include_router(templates.router)
    app.include_router(broadcasts.router)

    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "docs": "/docs",
            "active_modules": ["Webhooks", "Settings", "WhatsApp", "Templates", "Broadcasts"]
        }

    return app

app = create_app()
