"""Market resolution rules.

Pure functions from (market type, selection label, final score) to a
correct/incorrect verdict. Labels are free text typed by tipsters, so
matching is case-insensitive and tolerant ("Over 2.5", "+2.5 buts",
"PSG", "1X"). Anything not understood resolves as incorrect: a selection
is never assumed to have won.
"""

import logging
import re
from typing import Callable, Optional

logger = logging.getLogger("sharetips.market_rules")

_THRESHOLD_RE = re.compile(r"(\d+(?:[.,]\d+)?)")

# (label, home, away, home_team, away_team) -> verdict, None = label not understood
RuleFn = Callable[[str, int, int, str, str], Optional[bool]]


def _contains_team(label: str, team: str) -> bool:
    return bool(team) and team in label


def _resolve_h2h(label: str, home: int, away: int, home_team: str, away_team: str) -> Optional[bool]:
    if "home" in label or label == "1" or _contains_team(label, home_team):
        return home > away
    if "away" in label or label == "2" or _contains_team(label, away_team):
        return away > home
    if "draw" in label or "nul" in label or label == "x":
        return home == away
    return None


def parse_threshold(label: str) -> Optional[float]:
    """First number in a totals label ("Over 2.5" -> 2.5, "+2,5 buts" -> 2.5)."""
    match = _THRESHOLD_RE.search(label)
    if not match:
        return None
    try:
        return float(match.group(1).replace(",", "."))
    except ValueError:
        return None


def _resolve_totals(label: str, home: int, away: int, home_team: str, away_team: str) -> Optional[bool]:
    threshold = parse_threshold(label)
    if threshold is None:
        return None
    total = home + away
    if "over" in label or "plus" in label or "+" in label:
        return total > threshold
    if "under" in label or "moins" in label or "-" in label:
        return total < threshold
    return None


def _resolve_double_chance(label: str, home: int, away: int, home_team: str, away_team: str) -> Optional[bool]:
    if "1x" in label or ("home" in label and "draw" in label):
        return home >= away
    if "x2" in label or ("away" in label and "draw" in label):
        return away >= home
    if "12" in label or "no draw" in label:
        return home != away
    return None


def _resolve_btts(label: str, home: int, away: int, home_team: str, away_team: str) -> Optional[bool]:
    both_scored = home > 0 and away > 0
    if "yes" in label or "oui" in label:
        return both_scored
    if "no" in label or "non" in label:
        return not both_scored
    return None


_RULES: dict[str, RuleFn] = {
    "h2h": _resolve_h2h,
    "totals": _resolve_totals,
    "double_chance": _resolve_double_chance,
    "btts": _resolve_btts,
}

_MARKET_ALIASES = {
    "h2h": "h2h",
    "1x2": "h2h",
    "moneyline": "h2h",
    "totals": "totals",
    "over_under": "totals",
    "double_chance": "double_chance",
    "doublechance": "double_chance",
    "btts": "btts",
    "both_teams_to_score": "btts",
}


def normalize_market(market_type: str) -> Optional[str]:
    """Map a stored market type onto a rule key, or None if unsupported."""
    market = (market_type or "").strip().lower()
    if market in _MARKET_ALIASES:
        return _MARKET_ALIASES[market]
    if "over" in market or "under" in market:
        return "totals"
    if "both" in market:
        return "btts"
    return None


def is_selection_correct(
    market_type: str,
    label: str,
    home_score: int,
    away_score: int,
    home_team: str = "",
    away_team: str = "",
) -> bool:
    """Resolve one selection against a final score.

    Unknown markets and unparsable labels resolve as incorrect.
    """
    market = normalize_market(market_type)
    text = (label or "").strip().lower()
    rule = _RULES.get(market) if market else None

    verdict = None
    if rule is not None:
        verdict = rule(
            text, home_score, away_score,
            (home_team or "").strip().lower(), (away_team or "").strip().lower(),
        )

    if verdict is None:
        logger.warning(
            "Unresolvable selection, treating as incorrect: market=%r label=%r",
            market_type, label,
        )
        return False
    return verdict
