"""Payouts, collections and transaction lookups against the payment gateway"""

import logging
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from mfi_gateway.api.dependencies import get_gateway_client, get_ledger, get_request_id
from mfi_gateway.api.v1.schemas import (
    BulkPayoutIn,
    BulkPayoutOut,
    CollectionIn,
    PayoutIn,
    TransactionOut,
)
from mfi_gateway.domain.exceptions import AuthError, GatewayError, TransactionNotFoundError
from mfi_gateway.domain.models import HistoryFilter, TransactionStatus
from mfi_gateway.infrastructure.clients.gateway import GatewayClient
from mfi_gateway.infrastructure.database.repositories import TransactionLedger

router = APIRouter()


def _gateway_failure(e: Exception, request_id: str) -> HTTPException:
    if isinstance(e, AuthError):
        logging.error(f"Gateway authentication error: {e}", extra={"request_id": request_id})
        return HTTPException(status_code=503, detail="Payment gateway authentication unavailable")
    logging.error(f"Gateway error: {e}", extra={"request_id": request_id})
    return HTTPException(status_code=502, detail=str(e))


@router.post("/payouts", response_model=TransactionOut)
async def create_payout(
    body: PayoutIn,
    request: Request,
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """
    Disburse a loan to the borrower's mobile wallet.

    Re-submitting the same reference updates the existing ledger row.
    """
    try:
        return await gateway.create_payout(body.to_request())
    except (GatewayError, AuthError) as e:
        raise _gateway_failure(e, get_request_id(request))


@router.post("/payouts/bulk", response_model=BulkPayoutOut)
async def create_bulk_payouts(
    body: BulkPayoutIn,
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Disburse several payouts; each item succeeds or fails independently"""
    transactions = await gateway.create_bulk_payouts([p.to_request() for p in body.payouts])
    failed = sum(1 for tx in transactions if tx.last_error)
    return BulkPayoutOut(
        succeeded=len(transactions) - failed,
        failed=failed,
        transactions=[TransactionOut.model_validate(tx) for tx in transactions],
    )


@router.post("/collections", response_model=TransactionOut)
async def create_collection(
    body: CollectionIn,
    request: Request,
    gateway: GatewayClient = Depends(get_gateway_client),
):
    try:
        return await gateway.create_collection(body.to_request())
    except (GatewayError, AuthError) as e:
        raise _gateway_failure(e, get_request_id(request))


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
async def get_transaction_status(
    transaction_id: str,
    request: Request,
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Current gateway status; the local ledger is reconciled when the transaction is known"""
    try:
        return await gateway.get_status(transaction_id)
    except GatewayError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Transaction not found")
        raise _gateway_failure(e, get_request_id(request))
    except AuthError as e:
        raise _gateway_failure(e, get_request_id(request))


@router.get("/transactions", response_model=List[TransactionOut])
async def get_transaction_history(
    request: Request,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    status: Optional[TransactionStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: Optional[int] = Query(None, ge=0),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    history_filter = HistoryFilter(
        start_date=start_date,
        end_date=end_date,
        status=status,
        limit=limit,
        offset=offset,
    )
    try:
        return await gateway.get_history(history_filter)
    except (GatewayError, AuthError) as e:
        raise _gateway_failure(e, get_request_id(request))


@router.get("/ledger/{reference}", response_model=TransactionOut)
def get_ledger_entry(reference: str, ledger: TransactionLedger = Depends(get_ledger)):
    """Local ledger row for a caller reference"""
    try:
        return ledger.get(reference=reference)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")


@router.get("/account/balance")
async def get_account_balance(
    request: Request,
    gateway: GatewayClient = Depends(get_gateway_client),
):
    try:
        return await gateway.get_account_balance()
    except (GatewayError, AuthError) as e:
        raise _gateway_failure(e, get_request_id(request))


@router.get("/gateway/connection")
async def test_gateway_connection(gateway: GatewayClient = Depends(get_gateway_client)):
    return {"connected": await gateway.test_connection()}
