"""In-memory stand-in for the payment gateway REST API, used in tests and local development"""

import os
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import Depends, FastAPI, Header, HTTPException, Request

app = FastAPI(title="Mock Payment Gateway", version="1.0.0")

CLIENT_ID = os.getenv("GATEWAY_CLIENT_ID", "mfi-client")
CLIENT_SECRET = os.getenv("GATEWAY_CLIENT_SECRET", "change-me")
TOKEN_TTL_SECONDS = 3600

# Recipient numbers the gateway refuses, for exercising failure paths
REJECTED_PHONES = {"255700000000"}

TOKENS: set = set()
TRANSACTIONS: Dict[str, Dict[str, Any]] = {}
STATS = {"token_requests": 0}


def reset() -> None:
    TOKENS.clear()
    TRANSACTIONS.clear()
    STATS["token_requests"] = 0


def set_status(transaction_id: str, status: str) -> Dict[str, Any]:
    """Move a stored transaction to a new status (simulates gateway-side settlement)"""
    TRANSACTIONS[transaction_id]["status"] = status
    return TRANSACTIONS[transaction_id]


def require_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")
    token = authorization[len("Bearer "):]
    if token not in TOKENS:
        raise HTTPException(status_code=401, detail="invalid token")
    return token


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/oauth/token")
async def issue_token(request: Request):
    STATS["token_requests"] += 1
    form = {k: v[0] for k, v in parse_qs((await request.body()).decode()).items()}
    if form.get("grant_type") != "client_credentials":
        raise HTTPException(status_code=400, detail="unsupported grant_type")
    if form.get("client_id") != CLIENT_ID or form.get("client_secret") != CLIENT_SECRET:
        raise HTTPException(status_code=401, detail="invalid client credentials")

    token = uuid.uuid4().hex
    TOKENS.add(token)
    return {"access_token": token, "token_type": "Bearer", "expires_in": TOKEN_TTL_SECONDS}


def _create(kind: str, body: Dict[str, Any], phone_field: str) -> Dict[str, Any]:
    reference = body.get("reference")
    if not reference:
        raise HTTPException(status_code=422, detail="reference is required")
    if body.get(phone_field) in REJECTED_PHONES:
        raise HTTPException(status_code=400, detail="recipient not registered for mobile money")

    for existing in TRANSACTIONS.values():
        if existing["reference"] == reference:
            return existing

    id_field = "transaction_id" if kind == "payout" else "payment_id"
    transaction_id = f"{'tx' if kind == 'payout' else 'pay'}_{uuid.uuid4().hex[:12]}"
    record = {
        id_field: transaction_id,
        "type": kind,
        "status": "pending",
        "reference": reference,
        "amount": str(Decimal(str(body["amount"]))),
        "currency": body.get("currency", "TZS"),
        phone_field: body.get(phone_field),
    }
    TRANSACTIONS[transaction_id] = record
    return record


@app.post("/api/v1/payouts")
async def create_payout(request: Request, token: str = Depends(require_token)):
    return _create("payout", await request.json(), "recipient_phone")


@app.post("/api/v1/payments")
async def create_payment(request: Request, token: str = Depends(require_token)):
    return _create("payment", await request.json(), "customer_phone")


@app.get("/api/v1/transactions/{transaction_id}")
def get_transaction(transaction_id: str, token: str = Depends(require_token)):
    record = TRANSACTIONS.get(transaction_id)
    if record is None:
        raise HTTPException(status_code=404, detail="transaction not found")
    return record


@app.get("/api/v1/transactions")
def list_transactions(
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    token: str = Depends(require_token),
):
    items = [t for t in TRANSACTIONS.values() if status is None or t["status"] == status]
    return {"transactions": items[offset:offset + limit], "total": len(items)}


@app.get("/api/v1/account/balance")
def account_balance(token: str = Depends(require_token)):
    return {"balance": "25000000.00", "currency": "TZS", "available": "24500000.00"}
