"""SerpAPI market grounding client for Myers Construct.

Looks up live unit prices for materials through SerpAPI's Google Shopping
engine so the synthesis pass can ground line items in real retail prices.

Architecture:
- One shopping request per material, scoped to the project's location
- Provider relevance order is trusted: the top result is the best match
- "No results" is a normal outcome (None); transport/auth failures raise
  GroundingUnavailable so callers can tell the two apart
- Fan-out bounded to the first few identified materials
- Caching to minimize API calls

References:
- SerpAPI Google Shopping: https://serpapi.com/google-shopping-api
"""

import asyncio
import re
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from config.errors import GroundingUnavailable
from models.market import PriceRecord

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

SERPAPI_BASE_URL = "https://serpapi.com"
SERPAPI_TIMEOUT_SECONDS = 30.0
MAX_GROUNDED_MATERIALS = 3

# Circuit breaker configuration
CIRCUIT_BREAKER_RESET_SECONDS = 60 * 60  # 1 hour reset

CACHE_TTL_SECONDS = 900  # 15 minutes


class _TransientHTTPError(Exception):
    """5xx from SerpAPI; worth another attempt."""


# =============================================================================
# SerpAPI Service Class
# =============================================================================


class SerpApiService:
    """Market Grounding Client backed by SerpAPI Google Shopping.

    Provides:
    - lookup_price: best-match price for one material in one region
    - ground_materials: concurrent lookups for a short material list
    - Result caching and a quota circuit breaker
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = SERPAPI_TIMEOUT_SECONDS,
        max_materials: int = MAX_GROUNDED_MATERIALS,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """Initialize SerpApiService.

        Args:
            api_key: SerpAPI key. Defaults to the SERP_API_KEY secret.
            timeout: Per-request timeout in seconds.
            max_materials: Upper bound on lookups per ground_materials call.
            http_client: Optional shared client (tests inject a mock transport).
        """
        if api_key is None:
            from config.secrets import get_serp_api_key
            api_key = get_serp_api_key()
        self.api_key = api_key
        if not self.api_key:
            logger.warning("serpapi_key_missing", message="SERP_API_KEY not set; market grounding disabled")

        self.timeout = timeout
        self.max_materials = max_materials
        self._http_client = http_client

        self._cache: Dict[str, tuple[Optional[PriceRecord], float]] = {}
        self._circuit_opened_at: Optional[float] = None

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open (quota exhausted)."""
        if self._circuit_opened_at is None:
            return False

        if time.time() - self._circuit_opened_at > CIRCUIT_BREAKER_RESET_SECONDS:
            logger.info("serpapi_circuit_breaker_reset")
            self._circuit_opened_at = None
            return False

        return True

    def _trip_circuit_breaker(self) -> None:
        """Trip the circuit breaker due to quota exhaustion."""
        self._circuit_opened_at = time.time()
        logger.warning("serpapi_circuit_breaker_tripped", reason="API quota exhausted")

    def _get_cached(self, cache_key: str) -> tuple[bool, Optional[PriceRecord]]:
        """Return (hit, value) for a cache key."""
        if cache_key in self._cache:
            result, timestamp = self._cache[cache_key]
            if time.time() - timestamp < CACHE_TTL_SECONDS:
                return True, result
            del self._cache[cache_key]
        return False, None

    def _set_cached(self, cache_key: str, result: Optional[PriceRecord]) -> None:
        self._cache[cache_key] = (result, time.time())

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((httpx.TransportError, _TransientHTTPError)),
    )
    async def _send(self, client: httpx.AsyncClient, params: Dict[str, Any]) -> httpx.Response:
        response = await client.get(f"{SERPAPI_BASE_URL}/search.json", params=params)
        if response.status_code >= 500:
            raise _TransientHTTPError(f"SerpAPI returned {response.status_code}")
        return response

    async def _make_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make request to SerpAPI with retry logic.

        Args:
            params: Query parameters (api key is added here).

        Returns:
            JSON response from API.

        Raises:
            GroundingUnavailable: On missing credentials, open circuit breaker,
                transport failure or non-2xx status.
        """
        if self._is_circuit_open():
            raise GroundingUnavailable("SerpAPI circuit breaker is open - quota exhausted")

        if not self.api_key:
            raise GroundingUnavailable("SerpAPI key not configured")

        params = {**params, "api_key": self.api_key}

        try:
            if self._http_client is not None:
                response = await self._send(self._http_client, params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._send(client, params)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise GroundingUnavailable(
                f"SerpAPI unreachable: {cause}",
                cause=cause,
            )
        except (httpx.TransportError, _TransientHTTPError) as e:
            raise GroundingUnavailable(f"SerpAPI unreachable: {e}", cause=e)

        if response.status_code == 429:
            self._trip_circuit_breaker()
            raise GroundingUnavailable("SerpAPI quota exhausted", details={"status": 429})

        if response.status_code >= 400:
            error_msg = ""
            try:
                error_msg = str(response.json().get("error", ""))
            except ValueError:
                error_msg = response.text[:200]
            lowered = error_msg.lower()
            if "quota" in lowered or "run out" in lowered:
                self._trip_circuit_breaker()
            raise GroundingUnavailable(
                f"SerpAPI error {response.status_code}",
                details={"status": response.status_code, "error": error_msg},
            )

        try:
            return response.json()
        except ValueError as e:
            raise GroundingUnavailable("SerpAPI returned a non-JSON body", cause=e)

    async def lookup_price(self, material: str, location: str) -> Optional[PriceRecord]:
        """Find the best-match price for a material in a region.

        Args:
            material: Material name, used as the shopping query.
            location: Locale string, used as the search region.

        Returns:
            PriceRecord for the top-ranked result, or None if there were no
            results.

        Raises:
            GroundingUnavailable: If SerpAPI could not be reached.
        """
        cache_key = f"shopping:{material.lower()}:{location.lower()}"
        hit, cached = self._get_cached(cache_key)
        if hit:
            return cached

        start_time = time.time()
        data = await self._make_request({
            "engine": "google_shopping",
            "q": material,
            "location": location,
            "hl": "en",
            "gl": "us",
        })

        shopping_results = data.get("shopping_results") or []
        record = None
        if shopping_results:
            record = self._to_price_record(shopping_results[0], location)

        self._set_cached(cache_key, record)

        logger.info(
            "serpapi_price_lookup_complete",
            material=material[:50],
            location=location[:50],
            results_count=len(shopping_results),
            matched=record is not None,
            search_time_ms=round((time.time() - start_time) * 1000, 2)
        )
        return record

    async def ground_materials(self, materials: Sequence[str], location: str) -> List[PriceRecord]:
        """Look up prices for the first few materials concurrently.

        Individual lookup failures are absorbed; only found prices are
        returned, in input order.
        """
        to_ground = [m for m in materials if m and m.strip()][: self.max_materials]
        if not to_ground:
            return []

        outcomes = await asyncio.gather(
            *(self.lookup_price(material, location) for material in to_ground),
            return_exceptions=True,
        )

        records: List[PriceRecord] = []
        for material, outcome in zip(to_ground, outcomes):
            if isinstance(outcome, PriceRecord):
                records.append(outcome)
            elif isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "market_lookup_failed",
                    material=material[:50],
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )

        logger.info(
            "materials_grounded",
            requested=len(to_ground),
            grounded=len(records),
        )
        return records

    def _to_price_record(self, item: Dict[str, Any], location: str) -> PriceRecord:
        price = item.get("extracted_price")
        if price is None:
            price = self._parse_price(item.get("price") or "")
        try:
            return PriceRecord(
                name=str(item.get("title") or ""),
                price=float(price),
                retailer=str(item.get("source") or ""),
                link=str(item.get("link") or item.get("product_link") or ""),
                thumbnail=item.get("thumbnail") or None,
                location=location,
            )
        except (TypeError, ValueError) as e:
            raise GroundingUnavailable(
                "SerpAPI returned an unusable shopping result",
                details={"title": str(item.get("title"))[:80]},
                cause=e,
            )

    def _parse_price(self, price_str: str) -> float:
        """Parse price string to float.

        Args:
            price_str: Price string (e.g., "$29.99", "1,299.00")

        Returns:
            Price as float, or 0 if parsing fails
        """
        if not price_str:
            return 0.0

        cleaned = re.sub(r'[$,]', '', str(price_str))

        match = re.search(r'\d+(\.\d+)?', cleaned)
        if match:
            return float(match.group())

        return 0.0


# =============================================================================
# Module-level convenience functions
# =============================================================================

_default_service: Optional[SerpApiService] = None


def get_serpapi_service(config=None) -> SerpApiService:
    """Process-wide SerpApiService, so its cache and circuit breaker outlive a request.

    Args:
        config: Settings used on first construction only. Defaults to the
            settings singleton.
    """
    global _default_service
    if _default_service is None:
        if config is None:
            from config.settings import settings
            config = settings
        _default_service = SerpApiService(
            api_key=config.serp_api_key,
            timeout=config.market_timeout_seconds,
            max_materials=config.max_grounded_materials,
        )
    return _default_service
