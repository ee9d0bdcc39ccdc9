# /chathub/services/runtime_config.py

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, Set
from urllib.parse import urlsplit

import httpx

from chathub.config.settings import settings
from chathub.services.db_service import db_service

# Process-wide configuration that changes while the service runs: the set of
# origins allowed to open visitor connections (seeded from tenant website
# links) and variables published by the shared-variables service. Both are
# held by one owned object and replaced only through refresh().

logger = logging.getLogger(__name__)

PLAN_CONTROLLER_VARIABLE = "PLAN_CONTROLLER_SERVICE_URL"
FREE_TRIAL_VARIABLE = "FREE_TRIAL_DURATION_DAYS"


def normalize_origin(value: Optional[str]) -> Optional[str]:
    """Reduce a website link or Origin header to ``scheme://host[:port]``."""
    if not value:
        return None
    value = value.strip()
    if "://" not in value:
        value = f"https://{value}"
    parts = urlsplit(value)
    if not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


class RuntimeConfig:
    def __init__(
        self,
        static_origins: Iterable[str],
        link_loader: Optional[Callable[[], Awaitable[List[str]]]] = None,
        shared_variables_url: Optional[str] = None,
        shared_variables_api_key: Optional[str] = None,
    ):
        self._static_origins = {o for o in (normalize_origin(v) for v in static_origins) if o}
        self._origins: Set[str] = set(self._static_origins)
        self._link_loader = link_loader
        self._shared_variables_url = shared_variables_url.rstrip("/") if shared_variables_url else None
        self._shared_variables_api_key = shared_variables_api_key
        self.plan_controller_url: Optional[str] = settings.default_plan_controller_url
        self.free_trial_duration_days: int = settings.default_free_trial_duration_days
        self.last_refreshed_at: Optional[datetime] = None
        self._refresh_lock = asyncio.Lock()

    # ==================== Allowed origins ====================

    @property
    def allowed_origins(self) -> Set[str]:
        return set(self._origins)

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        normalized = normalize_origin(origin)
        return normalized is not None and normalized in self._origins

    def add_origin(self, link: Optional[str]) -> None:
        normalized = normalize_origin(link)
        if normalized:
            self._origins.add(normalized)

    def remove_origin(self, link: Optional[str]) -> None:
        normalized = normalize_origin(link)
        if normalized and normalized not in self._static_origins:
            self._origins.discard(normalized)

    def replace_origin(self, old_link: Optional[str], new_link: Optional[str]) -> None:
        self.remove_origin(old_link)
        self.add_origin(new_link)

    # ==================== Refresh ====================

    async def refresh(self) -> None:
        """Reload origins from tenant links and re-fetch shared variables."""
        async with self._refresh_lock:
            await self._refresh_origins()
            await self._refresh_shared_variables()
            self.last_refreshed_at = datetime.now(timezone.utc)

    async def _refresh_origins(self) -> None:
        if not self._link_loader:
            return
        try:
            links = await self._link_loader()
        except Exception as e:
            logger.error(f"Failed to load website links; keeping {len(self._origins)} known origins: {e}")
            return
        origins = set(self._static_origins)
        origins.update(o for o in (normalize_origin(link) for link in links) if o)
        self._origins = origins
        logger.info(f"Allowed origins refreshed: {len(self._origins)} entries")

    async def _refresh_shared_variables(self) -> None:
        if not self._shared_variables_url or not self._shared_variables_api_key:
            return
        headers = {"x-api-key": self._shared_variables_api_key}
        async with httpx.AsyncClient(timeout=5.0, headers=headers) as client:
            plan_url = await self._fetch_variable(client, PLAN_CONTROLLER_VARIABLE)
            trial_days = await self._fetch_variable(client, FREE_TRIAL_VARIABLE)

        if plan_url:
            self.plan_controller_url = plan_url
        if trial_days:
            try:
                self.free_trial_duration_days = int(trial_days)
            except ValueError:
                logger.warning(f"Ignoring non-numeric {FREE_TRIAL_VARIABLE}: {trial_days!r}")

    async def _fetch_variable(self, client: httpx.AsyncClient, name: str) -> Optional[str]:
        try:
            response = await client.get(f"{self._shared_variables_url}/variables/{name}")
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch shared variable {name}, keeping current value: {e}")
            return None
        if body.get("status") == "success" and body.get("value"):
            return str(body["value"])
        return None

    def snapshot(self) -> dict:
        return {
            "allowed_origins": sorted(self._origins),
            "plan_controller_url": self.plan_controller_url,
            "free_trial_duration_days": self.free_trial_duration_days,
            "last_refreshed_at": self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
        }


# Globally accessible instance
runtime_config = RuntimeConfig(
    static_origins=settings.cors_allowed_origins,
    link_loader=db_service.list_website_links,
    shared_variables_url=settings.shared_variables_service_url,
    shared_variables_api_key=settings.shared_variables_service_api_key,
)
