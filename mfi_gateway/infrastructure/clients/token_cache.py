"""Bearer credential cache for the payment gateway with single-flight refresh"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
import httpx

from mfi_gateway.config import settings
from mfi_gateway.domain.exceptions import AuthError
from mfi_gateway.domain.models import Credential
from mfi_gateway.infrastructure.observability.metrics import token_refresh_counter
from mfi_gateway.utils.date_utils import utcnow


class TokenCache:
    """
    Holds the gateway bearer token and refreshes it on demand.

    A cached credential is handed out without any I/O while it is fresh.
    When it is missing or stale, exactly one client-credentials exchange runs;
    callers arriving during that window await the same in-flight refresh and
    share its result or its AuthError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        safety_margin_seconds: int | None = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_url = base_url or settings.gateway_base_url
        self.client_id = client_id or settings.gateway_client_id
        self.client_secret = client_secret or settings.gateway_client_secret
        self.timeout = timeout or settings.http_timeout_seconds
        margin = settings.token_safety_margin_seconds if safety_margin_seconds is None else safety_margin_seconds
        self.safety_margin = timedelta(seconds=margin)
        self.http_client = http_client
        self.clock = clock

        self._credential: Optional[Credential] = None
        self._refresh: Optional[asyncio.Task] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def get_token(self) -> Credential:
        """
        Return a fresh credential, refreshing it if needed.

        Raises:
            AuthError: If the credential exchange fails
        """
        cached = self._credential
        if cached is not None and cached.is_fresh(self.clock()):
            return cached

        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._exchange())
            self._refresh.add_done_callback(self._clear_refresh)

        # Shield so one cancelled waiter does not abort the refresh for everyone else
        return await asyncio.shield(self._refresh)

    def invalidate(self) -> None:
        """Drop the cached credential (e.g. after the gateway answered 401)"""
        self._credential = None

    def _clear_refresh(self, task: asyncio.Task) -> None:
        if self._refresh is task:
            self._refresh = None
        if not task.cancelled():
            # Mark the exception as retrieved; waiters re-raise it themselves
            task.exception()

    async def _exchange(self) -> Credential:
        issued_at = self.clock()
        try:
            if self.http_client is not None:
                response = await self._post(self.http_client)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client)
            response.raise_for_status()
            data = response.json()
            token = data["access_token"]
            ttl = int(data["expires_in"])

        except httpx.TimeoutException as e:
            token_refresh_counter.labels(outcome="failure").inc()
            raise AuthError(f"Gateway authentication timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            token_refresh_counter.labels(outcome="failure").inc()
            raise AuthError(f"Gateway authentication failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            token_refresh_counter.labels(outcome="failure").inc()
            raise AuthError(f"Gateway authentication request failed: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            token_refresh_counter.labels(outcome="failure").inc()
            raise AuthError(f"Invalid token response from gateway: {e}") from e

        lifetime = timedelta(seconds=ttl)
        if lifetime <= self.safety_margin:
            token_refresh_counter.labels(outcome="failure").inc()
            raise AuthError(
                f"Gateway token lifetime {ttl}s does not exceed safety margin "
                f"{int(self.safety_margin.total_seconds())}s"
            )

        credential = Credential(
            token=token,
            issued_at=issued_at,
            expires_at=issued_at + lifetime - self.safety_margin,
        )
        self._credential = credential
        token_refresh_counter.labels(outcome="success").inc()
        logging.info("Gateway token refreshed", extra={"expires_at": credential.expires_at.isoformat()})
        return credential

    async def _post(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.post(
            f"{self.base_url}/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
