from abc import ABC, abstractmethod
from typing import Any, Optional


class ProviderError(Exception):
    """Score provider unreachable or returned an unusable response."""


class ProviderRateLimitError(ProviderError):
    """Provider refused the request because the quota/rate limit is exhausted."""


class BaseScoreProvider(ABC):
    """Abstract base class for match score providers."""

    name: str = "base"

    @abstractmethod
    async def get_scores(
        self, league_key: str, days_from: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Fetch live and recently completed scores for a league.

        Returns a list of dicts with:
        - external_id: str
        - home_team / away_team: str
        - home_score / away_score: int | None (None while unknown)
        - completed: bool

        Raises ProviderRateLimitError on quota exhaustion and ProviderError
        on any other failure.
        """
        ...

    @property
    @abstractmethod
    def api_usage(self) -> dict:
        """Last known quota usage: {"requests_used": int|None, "requests_remaining": int|None}."""
        ...
