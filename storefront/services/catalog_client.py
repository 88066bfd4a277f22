# storefront/services/catalog_client.py
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List

import requests
from pydantic import ValidationError as PydanticValidationError

from storefront.domain.errors import (
    ClientError,
    FetchCancelledError,
    NetworkError,
    SchemaError,
    ServerError,
)
from storefront.domain.schemas import CatalogProduct
from storefront.utils.clock import Clock, now_ms
from storefront.utils.logging import get_logger
from storefront.utils.retry import Sleep, http_retry
from storefront.utils.settings import (
    CATALOG_TIMEOUT_SECONDS,
    CATALOG_URL,
    FETCH_BASE_DELAY_SECONDS,
    FETCH_JITTER_RATIO,
    FETCH_MAX_ATTEMPTS,
)

logger = get_logger(__name__)

# 4xx codes that mean "try again later" rather than "bad request"
RETRYABLE_CLIENT_STATUSES = {408}


@dataclass
class FetchRequest:
    url: str
    method: str = "GET"
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)


def normalize_product(raw: Dict[str, Any], synced_at: int) -> CatalogProduct:
    data = dict(raw)
    if "isActive" not in data:
        data["isActive"] = int(data.get("availableQuantity") or 0) > 0
    data["lastSyncAt"] = synced_at
    return CatalogProduct.model_validate(data)


def parse_catalog(payload: Any, synced_at: int) -> List[CatalogProduct]:
    if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
        raise SchemaError("Invalid catalog response format")

    products = []
    for raw in payload["items"]:
        try:
            products.append(normalize_product(raw, synced_at))
        except (PydanticValidationError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed catalog entry {raw!r}: {e}")
    return products


class CatalogClient:
    """
    Reads the remote catalog with a per-call deadline, retry with
    exponential backoff + jitter, and typed error classification.
    The blocking HTTP call runs in a worker thread; a result arriving
    after the deadline or after cancellation is dropped.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = CATALOG_TIMEOUT_SECONDS,
        attempts: int = FETCH_MAX_ATTEMPTS,
        base_delay: float = FETCH_BASE_DELAY_SECONDS,
        jitter: float = FETCH_JITTER_RATIO,
        session: requests.Session | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = now_ms,
    ):
        self.base_url = (base_url or CATALOG_URL).rstrip("/")
        self.timeout = timeout
        self.attempts = attempts
        self.base_delay = base_delay
        self.jitter = jitter
        self.session = session or requests.Session()
        self.clock = clock
        self._sleep = sleep

    def close(self) -> None:
        self.session.close()

    async def fetch(
        self,
        request: FetchRequest | str,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Any:
        req = FetchRequest(url=request) if isinstance(request, str) else request
        deadline = self.timeout if timeout is None else timeout

        async for attempt in http_retry(self.attempts, self.base_delay, self.jitter, self._sleep):
            with attempt:
                number = attempt.retry_state.attempt_number
                logger.info(f"CatalogClient {req.method} {req.url} (attempt {number}/{self.attempts})")
                return await self._attempt(req, deadline, cancel)

    async def fetch_catalog(
        self,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> List[CatalogProduct]:
        request = FetchRequest(
            url=f"{self.base_url}/products",
            headers={"Accept": "application/json"},
        )
        payload = await self.fetch(request, timeout=timeout, cancel=cancel)
        products = parse_catalog(payload, self.clock())
        logger.info(f"Catalog loaded: {len(products)} product(s)")
        return products

    async def _attempt(
        self,
        req: FetchRequest,
        timeout: float,
        cancel: asyncio.Event | None,
    ) -> Any:
        if cancel is not None and cancel.is_set():
            raise FetchCancelledError(f"{req.method} {req.url} cancelled")

        call = asyncio.ensure_future(asyncio.to_thread(self._send, req, timeout))
        waiters = {call}
        cancelled = None
        if cancel is not None:
            cancelled = asyncio.ensure_future(cancel.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if call in done:
            return call.result()
        if cancelled is not None and cancelled in done:
            raise FetchCancelledError(f"{req.method} {req.url} cancelled")
        raise NetworkError(f"Request timed out after {timeout}s: {req.url}")

    def _send(self, req: FetchRequest, timeout: float) -> Any:
        try:
            resp = self.session.request(
                req.method,
                req.url,
                params=req.params or None,
                headers=req.headers or None,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise NetworkError(f"Timeout calling {req.url}: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Cannot reach {req.url}: {e}") from e
        return self._handle_response(req, resp)

    def _handle_response(self, req: FetchRequest, resp: requests.Response) -> Any:
        status = resp.status_code
        if status >= 500:
            raise ServerError(f"Server error ({status}) from {req.url}", status)
        if status in RETRYABLE_CLIENT_STATUSES:
            raise NetworkError(f"Request timeout ({status}) from {req.url}", status)
        if status >= 400:
            logger.error(f"Request failed: {status} - {req.url}")
            raise ClientError(f"HTTP error ({status}) from {req.url}", status)

        try:
            return resp.json()
        except ValueError as e:
            raise SchemaError(f"Response from {req.url} is not JSON") from e
