from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel


class MatchStatus(str, Enum):
    scheduled = "scheduled"
    live = "live"
    finished = "finished"


class MatchInDB(BaseModel):
    """Match document as stored in MongoDB.

    A single document matures through: scheduled -> live -> finished.
    Only the score sync worker writes status and scores.
    """
    external_id: Optional[str] = None     # TheOddsAPI event id
    sport_code: str                       # "FOOTBALL", "BASKETBALL"
    sport_key: str                        # provider league key, e.g. "soccer_epl"
    league_id: Optional[str] = None
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    home_team: str = ""                   # display name snapshot
    away_team: str = ""
    start_time: datetime
    status: MatchStatus = MatchStatus.scheduled

    # Final result: both set iff the result is known
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    live_score: Optional[Dict[str, Optional[int]]] = None  # {"home": 1, "away": 0}

    created_at: datetime
    updated_at: datetime
