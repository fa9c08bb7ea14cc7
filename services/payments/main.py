"""Payments service API built with FastAPI.

Simulates a payment provider for the storefront: ``POST /charge`` approves
or declines a charge and records a transaction with a SHA-256 hash, and the
``/transactions`` endpoints let the storefront verify or refund a payment
afterwards. Persistence lives in ``repo``.

Charges above ``PAYMENTS_DECLINE_ABOVE_CENTS`` are declined with 402 so the
storefront's failure path can be exercised.
"""

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from repo import IdempotencyKey, PaymentsRepo, Transaction, canonical_hash, engine, get_session

logger = logging.getLogger("payments")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

DECLINE_ABOVE_CENTS = int(os.getenv("PAYMENTS_DECLINE_ABOVE_CENTS", "100000000"))
DB_WAIT_SECS = float(os.getenv("PAYMENTS_DB_WAIT_SECS", "30"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Wait for the database to accept connections (compose starts both together).
    deadline = time.time() + DB_WAIT_SECS
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)
    yield


app = FastAPI(title="Payments Service", lifespan=lifespan)

Currency = constr(pattern=r"^[A-Z]{3}$")


class ChargeRequest(BaseModel):
    """Request body for the charge endpoint.

    Attributes:
        amount_cents: Positive amount in minor currency units.
        currency: Three-letter ISO currency code (e.g. USD).
    """

    amount_cents: int = Field(gt=0)
    currency: Currency


class ChargeResponse(BaseModel):
    paid: bool
    transaction_id: uuid.UUID
    transaction_hash: str


class TransactionOut(BaseModel):
    id: uuid.UUID
    amount_cents: int
    currency: str
    paid: bool
    refunded: bool
    transaction_hash: str
    created_at: datetime


def _outcome(tx: Transaction):
    body = ChargeResponse(paid=tx.paid, transaction_id=tx.id, transaction_hash=tx.transaction_hash)
    if tx.paid:
        return body
    return JSONResponse(
        status_code=402,
        content={"detail": "PAYMENT_DECLINED", **body.model_dump(mode="json")},
    )


def _simulate(req: ChargeRequest) -> Transaction:
    paid = req.amount_cents <= DECLINE_ABOVE_CENTS
    tx = PaymentsRepo().create_tx(amount_cents=req.amount_cents, currency=req.currency, paid=paid)
    logger.info(
        "charge processed",
        extra={"transaction_id": str(tx.id), "paid": tx.paid, "amount_cents": tx.amount_cents},
    )
    return tx


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/charge", response_model=ChargeResponse, responses={402: {"description": "Declined"}})
def charge(
    req: ChargeRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Charge a payment, at most once per ``Idempotency-Key``.

    The first request with a key creates the transaction and binds it to the
    key; retries with the same payload get the same outcome and
    ``transaction_id`` back. Reusing the key with a different payload is
    rejected.

    Args:
        req: Validated body with ``amount_cents`` and ``currency``.
        idempotency_key: Optional ``Idempotency-Key`` header.

    Returns:
        ChargeResponse on approval; 402 with the same fields when declined.

    Raises:
        HTTPException: 409 IDEMPOTENCY_CONFLICT when the key was used for a
            different payload.
    """
    if not idempotency_key:
        return _outcome(_simulate(req))

    payload_hash = canonical_hash(req.model_dump())
    with get_session() as s:
        try:
            s.add(IdempotencyKey(key=idempotency_key, request_hash=payload_hash))
            s.commit()
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == idempotency_key).with_for_update()
            ).scalars().first()
            if rec is None:
                raise HTTPException(status_code=500, detail="IDEMPOTENCY_LOOKUP_ERROR")
            if rec.request_hash != payload_hash:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
            if rec.transaction_id:
                tx = PaymentsRepo().get(rec.transaction_id)
                if tx is not None:
                    return _outcome(tx)

        tx = _simulate(req)
        rec = s.get(IdempotencyKey, idempotency_key)
        rec.transaction_id = tx.id
        s.commit()
        return _outcome(tx)


@app.get("/transactions/{tx_id}", response_model=TransactionOut)
def get_transaction(tx_id: uuid.UUID):
    tx = PaymentsRepo().get(tx_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return TransactionOut.model_validate(tx, from_attributes=True)


@app.post("/transactions/{tx_id}/refund")
def refund_transaction(tx_id: uuid.UUID):
    """Refund a paid transaction. Refunding twice returns the same result.

    Raises:
        HTTPException: 404 for an unknown transaction, 409 NOT_PAID for a
            declined one.
    """
    repo = PaymentsRepo()
    tx = repo.get(tx_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    if not tx.paid:
        raise HTTPException(status_code=409, detail="NOT_PAID")
    tx = repo.mark_refunded(tx_id)
    logger.info("charge refunded", extra={"transaction_id": str(tx.id), "amount_cents": tx.amount_cents})
    return {"refunded": True, "transaction_id": str(tx.id)}


@app.get("/transactions/verify/{tx_hash}")
def verify_transaction(tx_hash: str):
    """Look up a transaction by its hash; ``valid`` only for paid, unrefunded ones."""
    tx = PaymentsRepo().get_by_hash(tx_hash)
    if tx is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return {
        "valid": tx.paid and not tx.refunded,
        "transaction": TransactionOut.model_validate(tx, from_attributes=True).model_dump(mode="json"),
    }


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
