"""FastAPI server exposing the stock ledger and product catalog.

The consistency audit scheduler is embedded in this process when
``scheduler.enabled`` is set, so a single service handles requests and
periodic audits.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from .middleware.identity import IdentityValidator
from .models.identity import CallerIdentity
from .models.movement import MovementFilter
from .models.payloads import MovementCreate, ProductCreate, ProductUpdate
from .services.audit_service import AuditService
from .services.catalog import ProductCatalog
from .services.ledger import StockLedger
from .storage.database import Database
from .storage.repository import LedgerStore
from .utils.config import get_config
from .utils.exceptions import (
    IdentityValidationError,
    InsufficientStockError,
    InvalidMovementTypeError,
    InvalidProductError,
    InvalidQuantityError,
    LedgerError,
    PersistenceError,
    ProductNotFoundError,
)
from .utils.logger import get_api_logger
from .utils.timestamps import utc_now

# Initialize shared state
config = get_config()
logger = get_api_logger()
identity_validator = IdentityValidator()

# Most specific first; PersistenceError also covers ConcurrentUpdateError.
STATUS_BY_ERROR = (
    (ProductNotFoundError, 404),
    (InvalidQuantityError, 422),
    (InvalidMovementTypeError, 422),
    (InvalidProductError, 422),
    (InsufficientStockError, 409),
    (PersistenceError, 503),
)


# ------------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------------

@lru_cache()
def get_store() -> LedgerStore:
    """Process-wide store backed by ``DATABASE_URL``."""
    database = Database()
    database.create_all()
    return LedgerStore(database)


def get_ledger(store: LedgerStore = Depends(get_store)) -> StockLedger:
    return StockLedger(store)


def get_catalog(store: LedgerStore = Depends(get_store)) -> ProductCatalog:
    return ProductCatalog(store)


def get_audit_service(store: LedgerStore = Depends(get_store)) -> AuditService:
    return AuditService(store)


def get_caller(
    x_caller_id: Optional[str] = Header(default=None),
    x_caller_name: Optional[str] = Header(default=None),
    x_caller_signature: Optional[str] = Header(default=None),
) -> CallerIdentity:
    """Verified caller from the identity provider headers."""
    return identity_validator.validate(x_caller_id, x_caller_name, x_caller_signature)


def get_movement_filter(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    category: Optional[str] = None,
) -> Optional[MovementFilter]:
    if start is None and end is None and not category:
        return None
    try:
        return MovementFilter(start=start, end=end, category=category)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ------------------------------------------------------------------
# Lifespan
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup / shutdown of the application."""
    logger.info("=" * 60)
    logger.info("Stock Ledger API Starting")
    logger.info("=" * 60)
    logger.info(f"Environment:          {config.env.environment}")
    logger.info(f"Port:                 {config.env.port}")
    logger.info(f"Signature validation: {config.identity.validate_signature}")
    logger.info(f"Audit scheduler:      {config.scheduler.enabled}")
    logger.info("=" * 60)

    store = get_store()

    scheduler = None
    if config.scheduler.enabled:
        from .scheduler import create_background_scheduler

        scheduler = create_background_scheduler(store)
        scheduler.start()
        logger.info("Audit scheduler started")

    yield

    if scheduler is not None:
        logger.info("Shutting down audit scheduler...")
        scheduler.shutdown(wait=True)
    logger.info("Stock Ledger API shut down.")


# ------------------------------------------------------------------
# FastAPI app
# ------------------------------------------------------------------

app = FastAPI(
    title="Stock Ledger API",
    description="Products, stock movements and valuation for small businesses",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Stock Ledger API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "environment": config.env.environment
    }


# ------------------------------------------------------------------
# Products
# ------------------------------------------------------------------

@app.post("/products", status_code=201)
def create_product(
    payload: ProductCreate,
    caller: CallerIdentity = Depends(get_caller),
    catalog: ProductCatalog = Depends(get_catalog),
):
    return catalog.create_product(caller, payload.to_data()).to_dict()


@app.get("/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    caller: CallerIdentity = Depends(get_caller),
    catalog: ProductCatalog = Depends(get_catalog),
):
    products = catalog.list_products(caller, category=category, search=search)
    return {"products": [p.to_dict() for p in products], "count": len(products)}


@app.get("/products/categories")
def list_categories(
    caller: CallerIdentity = Depends(get_caller),
    catalog: ProductCatalog = Depends(get_catalog),
):
    return {"categories": catalog.list_categories(caller)}


@app.get("/products/{product_id}")
def get_product(
    product_id: str,
    caller: CallerIdentity = Depends(get_caller),
    catalog: ProductCatalog = Depends(get_catalog),
):
    return catalog.get_product(caller, product_id).to_dict()


@app.patch("/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    caller: CallerIdentity = Depends(get_caller),
    catalog: ProductCatalog = Depends(get_catalog),
):
    return catalog.update_product(caller, product_id, payload.to_changes()).to_dict()


@app.delete("/products/{product_id}", status_code=204)
def delete_product(
    product_id: str,
    caller: CallerIdentity = Depends(get_caller),
    catalog: ProductCatalog = Depends(get_catalog),
):
    catalog.delete_product(caller, product_id)
    return Response(status_code=204)


# ------------------------------------------------------------------
# Ledger
# ------------------------------------------------------------------

@app.post("/movements", status_code=201)
def record_movement(
    payload: MovementCreate,
    caller: CallerIdentity = Depends(get_caller),
    ledger: StockLedger = Depends(get_ledger),
):
    return ledger.record_movement(caller, payload.to_input()).to_dict()


@app.get("/movements")
def list_movements(
    movement_filter: Optional[MovementFilter] = Depends(get_movement_filter),
    caller: CallerIdentity = Depends(get_caller),
    ledger: StockLedger = Depends(get_ledger),
):
    movements = [m.to_dict() for m in ledger.list_movements(caller, movement_filter)]
    return {"movements": movements, "count": len(movements)}


@app.get("/valuation")
def stock_valuation(
    days: Optional[int] = Query(default=None, ge=1, le=366),
    movement_filter: Optional[MovementFilter] = Depends(get_movement_filter),
    caller: CallerIdentity = Depends(get_caller),
    ledger: StockLedger = Depends(get_ledger),
):
    return ledger.compute_stock_valuation(caller, movement_filter, days=days).to_dict()


@app.get("/audit")
def audit(
    caller: CallerIdentity = Depends(get_caller),
    audit_service: AuditService = Depends(get_audit_service),
):
    return audit_service.run_audit(owner_id=caller.id).to_dict()


# ------------------------------------------------------------------
# Exception handlers
# ------------------------------------------------------------------

@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    """Map typed ledger failures to HTTP statuses."""
    status_code = next(
        (status for error_type, status in STATUS_BY_ERROR if isinstance(exc, error_type)),
        400
    )
    logger.info(f"{request.method} {request.url.path} → {status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(IdentityValidationError)
async def identity_exception_handler(request: Request, exc: IdentityValidationError):
    logger.error(f"Caller validation failed: {exc.message}")
    return JSONResponse(
        status_code=401,
        content={"error": "Unauthorized", "message": exc.message, "details": {}}
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Custom HTTP exception handler."""
    logger.warning(f"HTTP {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unexpected errors."""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if not config.is_production else "An error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stock_ledger.server:app",
        host="0.0.0.0",
        port=config.env.port,
        reload=not config.is_production
    )
