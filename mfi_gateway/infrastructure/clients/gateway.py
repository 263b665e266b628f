"""Payment gateway HTTP client for payouts, collections, status and history"""

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence
import httpx

from mfi_gateway.config import settings
from mfi_gateway.domain.exceptions import AuthError, GatewayError
from mfi_gateway.domain.lifecycle import parse_status
from mfi_gateway.domain.models import (
    CollectionRequest,
    HistoryFilter,
    PayoutRequest,
    Transaction,
    TransactionKind,
    TransactionStatus,
)
from mfi_gateway.infrastructure.clients.token_cache import TokenCache
from mfi_gateway.infrastructure.database.repositories import TransactionLedger
from mfi_gateway.infrastructure.observability.logging import log_gateway_call
from mfi_gateway.infrastructure.observability.metrics import gateway_latency_histogram, gateway_request_counter


class GatewayClient:
    """
    Client for the external payment gateway.

    Every payout and collection is recorded in the TransactionLedger under
    the caller's reference before the request goes out, then updated in
    place from the gateway response, so a retried submission with the same
    reference never produces a second ledger row.
    """

    def __init__(
        self,
        token_cache: TokenCache,
        ledger: TransactionLedger,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: Optional[httpx.AsyncClient] = None,
        bulk_concurrency: int | None = None,
    ):
        self.token_cache = token_cache
        self.ledger = ledger
        self.base_url = base_url or settings.gateway_base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.http_client = http_client
        self.bulk_concurrency = bulk_concurrency or settings.bulk_payout_concurrency

    async def create_payout(self, request: PayoutRequest) -> Transaction:
        """
        Disburse funds to a borrower.

        Raises:
            GatewayError: On timeout, network failure or non-2xx response
            AuthError: If a gateway token cannot be obtained
        """
        return await self._submit(
            operation="payout",
            path="/api/v1/payouts",
            payload=request.to_payload(),
            pending=Transaction(
                reference=request.reference,
                kind=TransactionKind.PAYOUT,
                amount=request.amount,
                currency=request.currency,
                counterparty_phone=request.recipient_phone,
                counterparty_name=request.recipient_name,
            ),
        )

    async def create_bulk_payouts(self, requests: Sequence[PayoutRequest]) -> List[Transaction]:
        """
        Disburse several payouts concurrently.

        Each item succeeds or fails on its own. Results keep the input order;
        a failed item comes back as its ledger row with `last_error` set.
        """
        semaphore = asyncio.Semaphore(self.bulk_concurrency)

        async def submit(request: PayoutRequest) -> Transaction:
            async with semaphore:
                try:
                    return await self.create_payout(request)
                except Exception as e:
                    logging.error(
                        f"Bulk payout item failed: {e}",
                        extra={"reference": request.reference},
                    )
                    existing = self.ledger.find(reference=request.reference)
                    if existing is not None:
                        return existing
                    return Transaction(
                        reference=request.reference,
                        kind=TransactionKind.PAYOUT,
                        amount=request.amount,
                        currency=request.currency,
                        counterparty_phone=request.recipient_phone,
                        counterparty_name=request.recipient_name,
                        last_error=str(e),
                    )

        return list(await asyncio.gather(*(submit(r) for r in requests)))

    async def create_collection(self, request: CollectionRequest) -> Transaction:
        """
        Request a repayment from a borrower's mobile wallet.

        Raises:
            GatewayError: On timeout, network failure or non-2xx response
            AuthError: If a gateway token cannot be obtained
        """
        return await self._submit(
            operation="collection",
            path="/api/v1/payments",
            payload=request.to_payload(),
            pending=Transaction(
                reference=request.reference,
                kind=TransactionKind.COLLECTION,
                amount=request.amount,
                currency=request.currency,
                counterparty_phone=request.customer_phone,
                counterparty_name=request.customer_name,
            ),
        )

    async def get_status(self, transaction_id: str) -> Transaction:
        """
        Fetch current gateway status, reconciling the ledger if the transaction is known.

        Raises:
            GatewayError: On timeout, network failure or non-2xx response
        """
        data = await self._request("status", "GET", f"/api/v1/transactions/{transaction_id}")
        reported = self._parse_transaction(data)

        known = self.ledger.find(reference=reported.reference or None, transaction_id=transaction_id)
        if known is None:
            return reported

        return self.ledger.upsert_by_reference(
            Transaction(
                reference=known.reference,
                kind=known.kind,
                amount=known.amount,
                currency=known.currency,
                status=reported.status,
                transaction_id=reported.transaction_id or transaction_id,
                response_data=data,
            )
        )

    async def get_history(self, history_filter: HistoryFilter | None = None) -> List[Transaction]:
        """
        List gateway transactions matching the filter (not written to the ledger).

        Raises:
            GatewayError: On timeout, network failure, non-2xx or unparseable response
        """
        params = (history_filter or HistoryFilter()).to_params()
        data = await self._request("history", "GET", "/api/v1/transactions", params=params)
        items = data.get("transactions", data.get("data", [])) if isinstance(data, dict) else data
        return [self._parse_transaction(item) for item in items]

    async def get_account_balance(self) -> Dict[str, Any]:
        return await self._request("balance", "GET", "/api/v1/account/balance")

    async def test_connection(self) -> bool:
        """True if a gateway token can be obtained"""
        try:
            await self.token_cache.get_token()
            return True
        except AuthError:
            return False

    async def _submit(self, operation: str, path: str, payload: Dict[str, Any], pending: Transaction) -> Transaction:
        self.ledger.upsert_by_reference(pending)
        try:
            data = await self._request(operation, "POST", path, json=payload, reference=pending.reference)
            reported = self._parse_transaction(data, kind=pending.kind)
        except (GatewayError, AuthError) as e:
            self.ledger.record_error(pending.reference, str(e))
            raise

        return self.ledger.upsert_by_reference(
            Transaction(
                reference=pending.reference,
                kind=pending.kind,
                amount=pending.amount,
                currency=pending.currency,
                status=reported.status,
                transaction_id=reported.transaction_id,
                counterparty_phone=pending.counterparty_phone,
                counterparty_name=pending.counterparty_name,
                response_data=data,
            )
        )

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        reference: str | None = None,
        **kwargs,
    ) -> Any:
        start_time = time.time()
        status_code = None
        outcome = "success"
        try:
            response = await self._send(method, path, **kwargs)
            if response.status_code == 401:
                # Token may have been revoked before its advertised expiry
                self.token_cache.invalidate()
                response = await self._send(method, path, **kwargs)
            status_code = response.status_code
            response.raise_for_status()
            return response.json()

        except AuthError:
            outcome = "auth_error"
            raise
        except httpx.TimeoutException as e:
            outcome = "timeout"
            raise GatewayError(f"Gateway timeout after {self.timeout}s", body=str(e)) from e
        except httpx.HTTPStatusError as e:
            outcome = "http_error"
            raise GatewayError(
                f"Gateway error: {e.response.status_code}",
                status_code=e.response.status_code,
                body=e.response.text,
            ) from e
        except httpx.RequestError as e:
            outcome = "network_error"
            raise GatewayError(f"Gateway request failed: {e}", body=str(e)) from e
        except ValueError as e:
            outcome = "invalid_response"
            raise GatewayError("Gateway returned invalid JSON", status_code=status_code) from e
        finally:
            duration = time.time() - start_time
            gateway_latency_histogram.labels(operation=operation).observe(duration)
            gateway_request_counter.labels(operation=operation, outcome=outcome).inc()
            log_gateway_call(operation, reference, outcome, duration * 1000, status_code)

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        credential = await self.token_cache.get_token()
        headers = {
            "Authorization": f"Bearer {credential.token}",
            "Accept": "application/json",
        }
        url = f"{self.base_url}{path}"
        if self.http_client is not None:
            return await self.http_client.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    @staticmethod
    def _parse_transaction(data: Dict[str, Any], kind: TransactionKind | None = None) -> Transaction:
        """
        Build a Transaction from a payout, payment or listing item.

        Raises:
            GatewayError: If required fields are missing or malformed
        """
        try:
            transaction_id = data.get("transaction_id") or data.get("payment_id")
            status = parse_status(data.get("status")) or TransactionStatus.PENDING
            if kind is None:
                kind = (
                    TransactionKind.COLLECTION
                    if data.get("type") in ("payment", "collection") or "payment_id" in data
                    else TransactionKind.PAYOUT
                )
            return Transaction(
                reference=data.get("reference") or "",
                kind=kind,
                amount=Decimal(str(data.get("amount", "0"))),
                currency=data.get("currency", ""),
                status=status,
                transaction_id=transaction_id,
                counterparty_phone=data.get("recipient_phone") or data.get("customer_phone"),
                response_data=data,
            )
        except (AttributeError, InvalidOperation, TypeError) as e:
            raise GatewayError(f"Invalid transaction data from gateway: {e}") from e
