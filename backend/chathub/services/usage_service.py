# /chathub/services/usage_service.py

import logging
from datetime import date, datetime, timezone
from typing import Optional

import httpx
import tenacity

from chathub.config.settings import settings
from chathub.services.cache_service import cache_service
from chathub.utils.circuit_breaker import RedisCircuitBreaker
from chathub.utils.errors import UpstreamFailure

# Client for the token service that tracks per-tenant daily AI usage.

logger = logging.getLogger(__name__)

USAGE_CACHE_TTL_SECONDS = 30


class UsageService:
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=10.0)
        self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, "token_service")

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=1, min=0.5, max=4),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def resilient_api_call(self, func, *args, **kwargs) -> httpx.Response:
        return await self.circuit_breaker.call(func, *args, **kwargs)

    def _cache_key(self, tenant_id: str, day: date) -> str:
        return f"token_usage:{tenant_id}:{day.isoformat()}"

    async def get_daily_usage(self, tenant_id: str, day: Optional[date] = None) -> Optional[int]:
        """
        Units of AI usage recorded for ``tenant_id`` on ``day`` (UTC today by default).

        Returns:
            The count, or None when the token service could not be reached.
            Callers treat None as "ceiling reached".
        """
        day = day or datetime.now(timezone.utc).date()
        cached = await cache_service.get(self._cache_key(tenant_id, day))
        if cached is not None:
            return int(cached)
        url = f"{self.base_url}/tokens/usage/daily/{tenant_id}/{day.isoformat()}"
        try:
            response = await self.resilient_api_call(self.client.get, url)
            response.raise_for_status()
            body = response.json()
            # The service answers with a bare number; older versions wrapped it.
            total = int(body.get("totalTokens", 0)) if isinstance(body, dict) else int(body)
        except (httpx.HTTPError, UpstreamFailure, ValueError, TypeError) as e:
            logger.error(f"Failed to fetch daily token usage for tenant {tenant_id}: {e}")
            return None
        await cache_service.set(self._cache_key(tenant_id, day), str(total), ttl=USAGE_CACHE_TTL_SECONDS)
        return total

    async def record_usage(self, tenant_id: str, units: int = 1) -> None:
        """
        Record ``units`` of AI usage for today.

        Raises:
            UpstreamFailure: the token service rejected or could not take the record.
        """
        payload = {
            "websiteId": tenant_id,
            "tokensUsed": units,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await self.resilient_api_call(self.client.post, f"{self.base_url}/tokens/usage", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamFailure("token_service", str(e)) from e
        await cache_service.delete(self._cache_key(tenant_id, datetime.now(timezone.utc).date()))

    async def cleanup(self):
        await self.client.aclose()


# Globally accessible instance
usage_service = UsageService(settings.token_service_base_url)
