"""
backend/sharetips/workers/score_sync.py

Purpose:
    Score sync worker. Polls TheOddsAPI /scores for every enabled league and
    moves match documents scheduled -> live -> finished, writing live scores
    while a match is running and the final score once it is completed.

    Quota strategy:
        - one live call per league and cycle (1 credit)
        - a history call (daysFrom=1, 2 credits) only when the live call is
          empty and a locked ticket waits on a match that kicked off long ago

Dependencies:
    - sharetips.providers.odds_api
    - sharetips.services.match_repository
    - sharetips.services.ticket_repository
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from pymongo.errors import PyMongoError

from sharetips.config import settings
from sharetips.models.match import MatchStatus
from sharetips.monitoring.engine_metrics import METRIC_MATCHES_UPDATED
from sharetips.providers.base import BaseScoreProvider, ProviderError, ProviderRateLimitError
from sharetips.providers.odds_api import score_provider
from sharetips.services.match_repository import MatchRepository, match_repository
from sharetips.services.ticket_repository import TicketRepository, ticket_repository
from sharetips.utils import utcnow
from sharetips.workers._state import set_synced

logger = logging.getLogger("sharetips.score_sync")

HISTORY_DAYS_FROM = 1


@dataclass
class ScoreSyncResult:
    leagues_polled: int = 0
    matches_updated: int = 0
    errors: list[str] = field(default_factory=list)
    rate_limited: bool = False
    requests_remaining: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_update(match: dict, item: dict, now: datetime) -> dict[str, Any]:
    """Fields to $set on a match for one provider item ({} when nothing changed)."""
    new_status = MatchStatus.finished.value if item["completed"] else MatchStatus.live.value
    home, away = item["home_score"], item["away_score"]

    fields: dict[str, Any] = {}
    if match.get("status") != new_status:
        fields["status"] = new_status

    if new_status == MatchStatus.finished.value:
        if home is not None and away is not None and (
            match.get("home_score") != home or match.get("away_score") != away
        ):
            fields["home_score"] = home
            fields["away_score"] = away
    else:
        live = {"home": home, "away": away}
        if match.get("live_score") != live:
            fields["live_score"] = live

    if fields:
        fields["updated_at"] = now
    return fields


class ScoreSyncJob:
    def __init__(
        self,
        provider: BaseScoreProvider = score_provider,
        matches: MatchRepository = match_repository,
        tickets: TicketRepository = ticket_repository,
        sport_keys: Optional[list[str]] = None,
    ):
        self.provider = provider
        self.matches = matches
        self.tickets = tickets
        self.sport_keys = sport_keys

    async def run(self, now: Optional[datetime] = None) -> ScoreSyncResult:
        now = now or utcnow()
        result = ScoreSyncResult()
        sport_keys = self.sport_keys if self.sport_keys is not None else settings.sport_keys
        needs_history = await self._needs_history(now)

        for league in sport_keys:
            try:
                updated = await asyncio.wait_for(
                    self._sync_league(league, needs_history, now),
                    timeout=settings.SCORE_SYNC_LEAGUE_TIMEOUT_SECONDS,
                )
            except ProviderRateLimitError as exc:
                logger.warning("Score sync: rate limit reached at %s, stopping cycle: %s", league, exc)
                result.errors.append(f"Rate limit reached for {league}")
                result.rate_limited = True
                break
            except ProviderError as exc:
                logger.warning("Score sync: %s failed: %s", league, exc)
                result.errors.append(f"Scores {league}: {exc}")
            except asyncio.TimeoutError:
                logger.warning(
                    "Score sync: %s timed out after %.0fs",
                    league, settings.SCORE_SYNC_LEAGUE_TIMEOUT_SECONDS,
                )
                result.errors.append(f"Scores {league}: timeout")
            except PyMongoError:
                raise
            except Exception as exc:
                logger.exception("Score sync: unexpected error for %s", league)
                result.errors.append(f"Scores {league}: {exc}")
            else:
                result.leagues_polled += 1
                result.matches_updated += updated
                await set_synced(f"score_sync:{league}")

        result.requests_remaining = self.provider.api_usage.get("requests_remaining")
        logger.info(
            "Score sync done: %d league(s), %d match(es) updated, %d error(s), quota remaining=%s",
            result.leagues_polled, result.matches_updated, len(result.errors),
            result.requests_remaining,
        )
        return result

    async def _needs_history(self, now: datetime) -> bool:
        match_ids = await self.tickets.locked_match_ids()
        if not match_ids:
            return False
        cutoff = now - timedelta(hours=settings.SCORE_SYNC_HISTORY_AFTER_HOURS)
        return await self.matches.any_unfinished_started_before(match_ids, cutoff)

    async def _sync_league(self, league: str, needs_history: bool, now: datetime) -> int:
        items = await self.provider.get_scores(league)
        if not items and needs_history:
            logger.info("Score sync: no live scores for %s, fetching history", league)
            items = await self.provider.get_scores(league, days_from=HISTORY_DAYS_FROM)

        # Events without any score have not kicked off yet
        items = [
            i for i in items
            if i["home_score"] is not None or i["away_score"] is not None
        ]
        if not items:
            return 0

        known = await self.matches.get_by_external_ids(i["external_id"] for i in items)
        updated = 0
        for item in items:
            match = known.get(item["external_id"])
            if match is None:
                logger.debug("Score sync: unknown event %s in %s", item["external_id"], league)
                continue
            if match.get("status") == MatchStatus.finished.value:
                continue

            fields = build_update(match, item, now)
            if not fields:
                continue
            if await self.matches.apply_score_update(match["_id"], fields):
                updated += 1
                status = fields.get("status", match.get("status"))
                METRIC_MATCHES_UPDATED.labels(sport_key=league, status=status).inc()
                logger.debug(
                    "Match %s: %s %s - %s %s [%s]",
                    match["_id"], item["home_team"], item["home_score"],
                    item["away_score"], item["away_team"], status,
                )
        return updated


score_sync_job = ScoreSyncJob()


async def run() -> dict:
    """Scheduler entry point."""
    return (await score_sync_job.run()).as_dict()
