"""
Reseller Commission Billing API
Stripe subscription mirror, reseller commission ledger and payouts.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.db.session import normalize_database_url

# Render captures stdout/stderr, but logging module is more reliable
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Uses alembic.ini and DATABASE_URL.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    db_url = normalize_database_url(os.getenv("DATABASE_URL"))
    if not db_url:
        logger.error("DATABASE_URL is not set. Alembic migrations will not run.")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("sqlalchemy.url", db_url)
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


def allowed_origins() -> list[str]:
    raw = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.routes import admin_billing, promo_codes, webhooks
from app.db.session import engine
from app.db.base import Base
from app import models  # noqa: F401  registers every model with Base

app = FastAPI(title="Reseller Commission Billing")


@app.on_event("startup")
async def startup_event():
    """Create tables, then run Alembic migrations on every server restart."""
    try:
        print("🔄 Creating database tables...", file=sys.stderr)
        Base.metadata.create_all(bind=engine)
        print("✅ Database tables created", file=sys.stderr)
    except Exception as e:
        print(f"⚠️ Error creating tables: {str(e)}", file=sys.stderr)
        raise

    try:
        print("🔄 Running Alembic migrations...", file=sys.stderr)
        run_migrations()
        print("✅ Alembic migrations completed", file=sys.stderr)
    except Exception as e:
        print(f"❌ Alembic migration failed (server will not start): {str(e)}", file=sys.stderr)
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(admin_billing.router, prefix="/admin", tags=["Admin billing"])
app.include_router(promo_codes.router, prefix="/admin", tags=["Promo codes"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/health")
async def health():
    return {"status": "ok"}
