from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from app.core.config import settings
from app.database.database import engine, Base
from app.common.middleware import TenantMiddleware, SecurityHeadersMiddleware
from app.modules.approvals.router import approvals_router

# Models must be imported so Base.metadata knows every table
import app.modules.company.models
import app.modules.categories.models
import app.modules.pdv.models
import app.modules.approvals.models

APP_VERSION = "1.0.0"
IS_PRODUCTION = settings.ENVIRONMENT == "production"

logging.basicConfig(
    level=logging.INFO if IS_PRODUCTION else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Expense Approvals API",
    description="Flujos de aprobación de gastos por empresa: definición, activación y evaluación",
    version=APP_VERSION,
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)

# Starlette runs the last added middleware first: CORS, then tenant, then headers
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TenantMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(approvals_router, prefix="/api/v1")

# Development only; production schemas are managed outside the app
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=engine)


@app.get("/")
async def read_root():
    return {"service": "expense-approvals", "version": APP_VERSION, "environment": settings.ENVIRONMENT}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info(f"Expense Approvals API {APP_VERSION} starting ({settings.ENVIRONMENT}, debug={settings.DEBUG})")
    logger.info(f"Approval fallback roles: {', '.join(settings.APPROVAL_FALLBACK_ROLES)}")
