"""
Shared machinery for HTTP provider adapters.

Every HTTP adapter gets:
- its own httpx.AsyncClient (injectable, e.g. with httpx.MockTransport)
- tenacity retries for transient transport errors and HTTP 5xx
- a per-instance circuit breaker (5 failures -> open for 60s)
- translation of every expected failure into a ProviderFailure

Subclasses implement ``_lookup`` and raise the domain exceptions from
nutriscan.domain.shared.errors; ``resolve`` never raises for them.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional, Tuple

import httpx
import pydantic
import structlog
from circuitbreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from nutriscan.domain.nutrition.models import ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation, Observation
from nutriscan.domain.resolution.models import (
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
)
from nutriscan.domain.shared.errors import (
    MalformedResponseError,
    RateLimitError,
    ServiceUnavailableError,
    TimeoutError,
)

logger = structlog.get_logger(__name__)


class NotFound(Exception):
    """Raised inside ``_lookup`` when the provider has no record."""


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class HttpProviderAdapter:
    """
    Base class for adapters backed by a JSON HTTP API.

    Example:
        >>> async with OpenFoodFactsAdapter() as adapter:
        ...     outcome = await adapter.resolve(BarcodeObservation(code="3017620422003"))
    """

    name = "http"
    TIMEOUT_S = 8.0
    MAX_ATTEMPTS = 2
    FAILURE_THRESHOLD = 5
    RECOVERY_TIMEOUT_S = 60
    USER_AGENT = "nutriscan/0.1 (food-resolution-pipeline)"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: Optional[float] = None,
        max_attempts: Optional[int] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """Initialize adapter.

        Args:
            client: Pre-built httpx client (tests, shared pools)
            timeout_s: Per-request timeout
            max_attempts: Attempts per request for transient errors
            breaker: Circuit breaker, one per adapter by default
        """
        self.timeout_s = timeout_s or self.TIMEOUT_S
        self.max_attempts = max_attempts or self.MAX_ATTEMPTS
        self._client = client
        self._owns_client = client is None
        self._breaker = breaker or CircuitBreaker(
            failure_threshold=self.FAILURE_THRESHOLD,
            recovery_timeout=self.RECOVERY_TIMEOUT_S,
            expected_exception=(httpx.TransportError, ServiceUnavailableError),
            name=f"{self.name}_breaker",
        )
        self._guarded_send = self._breaker(self._send_with_retry)

    async def __aenter__(self) -> "HttpProviderAdapter":
        """Async context manager entry."""
        self._http()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the owned HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                headers={"User-Agent": self.USER_AGENT},
            )
        return self._client

    # ───────────────────────────────────────────────────────
    # Transport
    # ───────────────────────────────────────────────────────

    async def _send_with_retry(
        self, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=(
                retry_if_exception_type(
                    (httpx.TransportError, ServiceUnavailableError)
                )
                & retry_if_not_exception_type(httpx.TimeoutException)
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._http().request(method, url, **kwargs)
                if response.status_code >= 500:
                    raise ServiceUnavailableError(
                        f"{self.name} returned HTTP {response.status_code}"
                    )
        return response

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        not_found_statuses: Tuple[int, ...] = (404,),
    ) -> Optional[Dict[str, Any]]:
        """
        GET a JSON object.

        Returns:
            Decoded JSON object, or None on a not-found status

        Raises:
            RateLimitError: HTTP 429
            MalformedResponseError: Other 4xx, non-JSON or non-object body
            ServiceUnavailableError: 5xx after retries
            CircuitBreakerError: Breaker open
            httpx.TransportError: Network failure after retries
        """
        response = await self._guarded_send(
            "GET", url, params=params, headers=headers
        )

        if response.status_code in not_found_statuses:
            return None
        if response.status_code == 429:
            raise RateLimitError(
                f"{self.name} rate limited", retry_after=_retry_after(response)
            )
        if response.status_code >= 400:
            raise MalformedResponseError(
                f"{self.name} returned HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedResponseError(f"{self.name} returned non-JSON body") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{self.name} returned non-object JSON")
        return data

    # ───────────────────────────────────────────────────────
    # Adapter contract
    # ───────────────────────────────────────────────────────

    def supports_region(self, code: str) -> bool:
        """Authoritative for every barcode unless overridden."""
        return True

    async def _lookup(
        self, observation: BarcodeObservation, hint: Optional[str]
    ) -> ProviderResult:
        raise NotImplementedError

    def _failure(
        self,
        kind: FailureKind,
        message: str,
        retry_after_s: Optional[float] = None,
    ) -> ProviderFailure:
        return ProviderFailure(
            kind=kind,
            provider=self.name,
            message=message,
            retry_after_s=retry_after_s,
        )

    async def resolve(
        self, observation: Observation, *, hint: Optional[str] = None
    ) -> ProviderOutcome:
        """Resolve a barcode; never raises for expected failures."""
        if not isinstance(observation, BarcodeObservation):
            return self._failure(FailureKind.NOT_FOUND, "Only barcodes supported")

        start = time.perf_counter()
        try:
            result = await self._lookup(observation, hint)
        except NotFound as e:
            outcome: ProviderOutcome = self._failure(FailureKind.NOT_FOUND, str(e))
        except CircuitBreakerError:
            outcome = self._failure(
                FailureKind.RATE_LIMITED,
                "Circuit breaker open",
                retry_after_s=max(float(self._breaker.open_remaining), 0.0),
            )
        except RateLimitError as e:
            outcome = self._failure(
                FailureKind.RATE_LIMITED, str(e), retry_after_s=e.retry_after
            )
        except (httpx.TimeoutException, TimeoutError) as e:
            outcome = self._failure(FailureKind.TIMEOUT, str(e) or "Request timed out")
        except httpx.TransportError as e:
            outcome = self._failure(FailureKind.TIMEOUT, f"Unreachable: {e}")
        except (
            MalformedResponseError,
            ServiceUnavailableError,
            pydantic.ValidationError,
            KeyError,
            TypeError,
            ValueError,
        ) as e:
            outcome = self._failure(FailureKind.MALFORMED_RESPONSE, str(e))
        else:
            outcome = result

        elapsed_ms = (time.perf_counter() - start) * 1000
        if isinstance(outcome, ProviderFailure):
            logger.info(
                "Provider lookup failed",
                provider=self.name,
                barcode=observation.code,
                kind=outcome.kind.value,
                elapsed_ms=round(elapsed_ms, 1),
            )
        else:
            logger.info(
                "Provider lookup succeeded",
                provider=self.name,
                barcode=observation.code,
                product=outcome.name,
                elapsed_ms=round(elapsed_ms, 1),
            )
        return outcome


def as_float(value: Any) -> Optional[float]:
    """Lenient float conversion for provider payloads ("12,5", "n/a", None)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", "."))
        except ValueError:
            return None
    return None
