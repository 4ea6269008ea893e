import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api import auth, inventory
from app.config import settings
from app.database import SessionLocal, init_db
from app.services.auth_service import ensure_default_admin
from app.services.exceptions import StockLedgerError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    db = SessionLocal()
    try:
        ensure_default_admin(db)
    finally:
        db.close()
    logger.info("%s started", settings.APP_NAME)
    yield


app = FastAPI(
    title="Stock Ledger API",
    description="Multi-store stock in, stock out, transfers and the inventory ledger",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StockLedgerError)
async def stock_ledger_exception_handler(request: Request, exc: StockLedgerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so frontend can parse error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(auth.router, prefix="/api/v1")
app.include_router(inventory.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
