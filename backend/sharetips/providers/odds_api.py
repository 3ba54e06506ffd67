import logging
from typing import Any, Optional

import httpx

import sharetips.database as _db
from sharetips.config import settings
from sharetips.monitoring.engine_metrics import (
    METRIC_PROVIDER_QUOTA_REMAINING,
    METRIC_PROVIDER_QUOTA_USED,
    METRIC_PROVIDER_RATE_LIMITED,
    METRIC_PROVIDER_REQUESTS,
)
from sharetips.providers.base import (
    BaseScoreProvider,
    ProviderError,
    ProviderRateLimitError,
)
from sharetips.providers.http_client import ResilientClient

logger = logging.getLogger("sharetips.odds_api")

PROVIDER_NAME = "theoddsapi"
_USAGE_META_ID = "odds_api_usage"


def _parse_int_header(resp: httpx.Response, name: str) -> Optional[int]:
    value = resp.headers.get(name)
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_score(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class TheOddsAPIScoreProvider(BaseScoreProvider):
    """TheOddsAPI /scores client with quota tracking and circuit breaker.

    Every call costs quota (1 credit live-only, 2 with ``daysFrom``), so no
    retries on 429: quota exhaustion is reported to the caller immediately.
    """

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.ODDSAPIKEY
        self._base_url = (base_url or settings.THEODDSAPI_BASE_URL).rstrip("/")
        self._client = ResilientClient(
            PROVIDER_NAME,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            max_retries=settings.PROVIDER_MAX_RETRIES,
            base_delay=settings.PROVIDER_RETRY_BASE_DELAY_SECONDS,
            failure_threshold=settings.PROVIDER_CIRCUIT_FAILURE_THRESHOLD,
            recovery_seconds=settings.PROVIDER_CIRCUIT_RECOVERY_SECONDS,
            transport=transport,
        )
        self._api_usage: dict[str, Optional[int]] = {
            "requests_used": None,
            "requests_remaining": None,
        }
        self._usage_loaded = False

    async def get_scores(
        self, league_key: str, days_from: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        if not self._client.circuit.allow_request():
            METRIC_PROVIDER_REQUESTS.labels(provider=PROVIDER_NAME, outcome="circuit_open").inc()
            raise ProviderError(f"circuit open, skipping scores for {league_key}")

        params: dict[str, Any] = {"apiKey": self._api_key, "dateFormat": "iso"}
        if days_from is not None:
            params["daysFrom"] = days_from

        try:
            resp = await self._client.get(
                f"{self._base_url}/sports/{league_key}/scores", params=params,
            )
        except httpx.HTTPError as exc:
            self._client.circuit.record_failure()
            METRIC_PROVIDER_REQUESTS.labels(provider=PROVIDER_NAME, outcome="network_error").inc()
            raise ProviderError(f"network error for {league_key}: {exc}") from exc

        self._track_usage_headers(resp)

        if resp.status_code == 429:
            METRIC_PROVIDER_RATE_LIMITED.labels(provider=PROVIDER_NAME).inc()
            METRIC_PROVIDER_REQUESTS.labels(provider=PROVIDER_NAME, outcome="rate_limited").inc()
            raise ProviderRateLimitError(
                f"rate limit reached for {league_key} "
                f"(remaining={self._api_usage['requests_remaining']})"
            )

        if resp.status_code >= 400:
            self._client.circuit.record_failure()
            METRIC_PROVIDER_REQUESTS.labels(provider=PROVIDER_NAME, outcome="http_error").inc()
            raise ProviderError(f"HTTP {resp.status_code} for {league_key}")

        try:
            raw = resp.json()
        except ValueError as exc:
            self._client.circuit.record_failure()
            METRIC_PROVIDER_REQUESTS.labels(provider=PROVIDER_NAME, outcome="bad_payload").inc()
            raise ProviderError(f"invalid JSON for {league_key}") from exc

        self._client.circuit.record_success()
        METRIC_PROVIDER_REQUESTS.labels(provider=PROVIDER_NAME, outcome="ok").inc()
        await self._persist_usage()
        return self._parse_scores_response(raw)

    def _parse_scores_response(self, raw: Any) -> list[dict[str, Any]]:
        if not isinstance(raw, list):
            raise ProviderError("scores payload is not a list")

        results = []
        for event in raw:
            event_id = event.get("id")
            if not event_id:
                continue
            home_team = event.get("home_team") or ""
            away_team = event.get("away_team") or ""

            home_score = None
            away_score = None
            for s in event.get("scores") or []:
                if s.get("name") == home_team:
                    home_score = _parse_score(s.get("score"))
                elif s.get("name") == away_team:
                    away_score = _parse_score(s.get("score"))

            results.append({
                "external_id": str(event_id),
                "home_team": home_team,
                "away_team": away_team,
                "home_score": home_score,
                "away_score": away_score,
                "completed": bool(event.get("completed")),
            })
        return results

    def _track_usage_headers(self, resp: httpx.Response) -> None:
        """Extract and export API usage from response headers."""
        used = _parse_int_header(resp, "x-requests-used")
        remaining = _parse_int_header(resp, "x-requests-remaining")
        if used is not None:
            self._api_usage["requests_used"] = used
            METRIC_PROVIDER_QUOTA_USED.labels(provider=PROVIDER_NAME).set(used)
        if remaining is not None:
            self._api_usage["requests_remaining"] = remaining
            METRIC_PROVIDER_QUOTA_REMAINING.labels(provider=PROVIDER_NAME).set(remaining)
            if remaining <= settings.PROVIDER_QUOTA_WARN_THRESHOLD:
                logger.warning("TheOddsAPI quota low: %d requests remaining", remaining)

    async def _persist_usage(self) -> None:
        """Persist API usage to DB so it survives restarts."""
        try:
            await _db.db.meta.update_one(
                {"_id": _USAGE_META_ID},
                {"$set": dict(self._api_usage)},
                upsert=True,
            )
        except Exception:
            logger.warning("Failed to persist API usage to DB", exc_info=True)

    async def load_usage(self) -> dict:
        """Return API usage, loading the persisted copy on first access."""
        if not self._usage_loaded:
            self._usage_loaded = True
            try:
                doc = await _db.db.meta.find_one({"_id": _USAGE_META_ID})
                if doc:
                    for key in ("requests_used", "requests_remaining"):
                        if self._api_usage[key] is None:
                            self._api_usage[key] = doc.get(key)
            except Exception:
                logger.debug("Failed to load persisted API usage from DB", exc_info=True)
        return self._api_usage

    @property
    def api_usage(self) -> dict:
        return self._api_usage

    @property
    def circuit_open(self) -> bool:
        return self._client.circuit.is_open

    @property
    def circuit_state(self) -> str:
        return self._client.circuit.state

    async def aclose(self) -> None:
        await self._client.aclose()


# Singleton provider instance
score_provider = TheOddsAPIScoreProvider()
