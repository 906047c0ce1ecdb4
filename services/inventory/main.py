"""Stock service API built with FastAPI.

Holds the authoritative stock ledger when the storefront runs with
``USE_HTTP_ADAPTERS``. Request bodies are validated with pydantic; the
ledger itself lives in ``repo.InventoryRepo``.
"""

import logging
import time
import uuid

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from repo import InventoryRepo, ReserveOutcome, engine, init_db

app = FastAPI(title="Stock Service")

logger = logging.getLogger("inventory")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the database accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class StockChange(BaseModel):
    product_id: str = Field(min_length=1, max_length=36)
    quantity: int = Field(gt=0)


class StockLevel(BaseModel):
    quantity: int = Field(ge=0)


class StockOut(BaseModel):
    product_id: str
    quantity: int


@app.get("/health")
def health():
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1"))
    except OperationalError:
        logger.exception("health check: database unreachable", extra={"request_id": "-"})
        raise HTTPException(status_code=503, detail={"ok": False})
    return {"ok": True}


@app.post("/reserve")
def reserve(req: StockChange):
    """Reserve units of one product.

    Raises:
        HTTPException: 422 ``INSUFFICIENT_STOCK`` or 404 ``NOT_FOUND``.
    """
    outcome = InventoryRepo().reserve(req.product_id, req.quantity)
    if outcome == ReserveOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail={"reserved": False, "detail": "NOT_FOUND"})
    if outcome == ReserveOutcome.INSUFFICIENT:
        raise HTTPException(status_code=422, detail={"reserved": False, "detail": "INSUFFICIENT_STOCK"})
    return {"reserved": True}


@app.post("/release")
def release(req: StockChange):
    if not InventoryRepo().release(req.product_id, req.quantity):
        raise HTTPException(status_code=404, detail={"released": False, "detail": "NOT_FOUND"})
    return {"released": True}


@app.get("/stock/{product_id}", response_model=StockOut)
def get_stock(product_id: str):
    quantity = InventoryRepo().get(product_id)
    if quantity is None:
        raise HTTPException(status_code=404, detail={"detail": "NOT_FOUND"})
    return StockOut(product_id=product_id, quantity=quantity)


@app.put("/stock/{product_id}", response_model=StockOut)
def put_stock(product_id: str, body: StockLevel):
    InventoryRepo().set(product_id, body.quantity)
    return StockOut(product_id=product_id, quantity=body.quantity)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request handled",
        extra={
            "request_id": rid,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 1),
        },
    )
    response.headers["X-Request-ID"] = rid
    return response
