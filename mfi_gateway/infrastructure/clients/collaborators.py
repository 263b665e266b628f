"""Loan event webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from mfi_gateway.config import settings
from mfi_gateway.domain.exceptions import CollaboratorNotificationError
from mfi_gateway.infrastructure.observability.metrics import collaborator_latency_histogram, collaborator_failure_counter


class LoanEventsClient:
    """Client for notifying the loan book of disbursements and repayments"""

    def __init__(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        timeout: float | None = None,
    ):
        self.webhook_url = webhook_url or settings.loan_events_webhook_url
        self.max_retries = max_retries or settings.loan_events_max_retries
        self.backoff_base = settings.loan_events_backoff_base if backoff_base is None else backoff_base
        self.timeout = timeout or settings.http_timeout_seconds

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Send a loan event (disbursed, repayment received, ...) with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base * 2^attempt)
        - Retries on 5xx errors and network failures
        - 4xx responses are not retried
        - Tracks latency histogram and failure counter

        Raises:
            CollaboratorNotificationError: When all attempts fail
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with collaborator_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=self.timeout,
                        )
                        response.raise_for_status()
                        return  # Success

                except httpx.HTTPStatusError as e:
                    attempt += 1
                    collaborator_failure_counter.inc()
                    if e.response.status_code < 500 or attempt >= self.max_retries:
                        raise CollaboratorNotificationError(
                            f"Loan event rejected: {e.response.status_code}"
                        ) from e

                except httpx.RequestError as e:
                    attempt += 1
                    collaborator_failure_counter.inc()
                    if attempt >= self.max_retries:
                        raise CollaboratorNotificationError(f"Loan event delivery failed: {e}") from e

                # Exponential backoff: 1s, 2s, 4s, 8s, 16s
                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)
