"""
Outputs for finished match records: a JSON file per match, and an optional
HTTP submission of the same data in the collection server's field layout.

The two sinks are independent. A failed submission never prevents the file
write, and a failed file write never prevents the submission.
"""

import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from .domain.match import MatchRecord

logger = logging.getLogger(__name__)

BOARD_MINION_ID_BASE = 10000


def to_submission_payload(record: MatchRecord) -> Dict[str, Any]:
    """Rename/reshape a MatchRecord into the collection server's format."""
    return {
        "playerIdentifier": record.player_identifier,
        "placement": record.placement,
        "startingMmr": record.starting_mmr,
        "mmrGained": record.mmr_gained,
        "gameDurationInSeconds": record.game_duration_seconds,
        "gameEndDate": record.game_end_date,
        "heroPlayed": record.hero_played,
        "heroPlayedName": record.hero_played_name,
        "triplesCreated": record.triples_created,
        "battleLuck": 0.0,
        "server": f"REGION_{record.region}",
        "turns": [
            {
                "turn": t.turn,
                "heroDamage": t.hero_damage,
                "winOdds": t.win_rate,
                "tieOdds": t.tie_rate,
                "lossOdds": t.loss_rate,
                "averageDamageTaken": 0.0,
                "averageDamageDealt": 0.0,
                "actualCombatResult": t.actual_combat_result.value if t.actual_combat_result else None,
                "actualLethalResult": t.actual_lethal_result.value if t.actual_lethal_result else None,
                "numMinionsPlayedThisTurn": t.minions_played_this_turn,
                "numSpellsPlayedThisGame": t.spells_played_this_game,
                "numResourcesSpentThisGame": t.resources_spent_this_game,
                "tavernTier": t.tavern_tier,
            }
            for t in record.turns
        ],
        "finalComp": {
            "board": [
                {
                    "cardID": m.card_id,
                    "id": BOARD_MINION_ID_BASE + index,
                    "tags": {
                        "ATK": m.attack,
                        "HEALTH": m.health,
                        "TAUNT": int(m.taunt),
                        "DIVINE_SHIELD": int(m.divine_shield),
                        "REBORN": int(m.reborn),
                        "POISONOUS": int(m.poisonous),
                        "VENOMOUS": int(m.venomous),
                    },
                }
                for index, m in enumerate(record.final_board)
            ]
        },
    }


class MatchRecordWriter:
    """Writes each record to ``<output_dir>/BGGame_<timestamp>.json``."""

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)

    def path_for(self, moment: datetime.datetime) -> Path:
        base = self.output_dir / f"BGGame_{moment:%Y%m%d_%H%M%S}.json"
        path, n = base, 1
        while path.exists():
            path = base.with_name(f"{base.stem}_{n}{base.suffix}")
            n += 1
        return path

    def write(self, record: MatchRecord, moment: Optional[datetime.datetime] = None) -> Path:
        """
        Serialize ``record``.

        Raises:
            OSError: if the directory or file cannot be written
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(moment or datetime.datetime.now())
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(record.to_dict(), f, indent=2)
        logger.info(f"BG game data saved to: {path}")
        return path


class MatchSubmitter:
    """POSTs records to the collection server. Never retries, never raises."""

    def __init__(self, api_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def submit(self, record: MatchRecord) -> bool:
        payload = to_submission_payload(record)
        try:
            response = self.session.post(
                self.api_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Failed to submit game data to {self.api_url}: {e}")
            return False

        if not response.ok:
            logger.error(
                f"Game data submission rejected: HTTP {response.status_code} - {response.text[:500]}"
            )
            return False

        logger.info(f"Game data submitted to {self.api_url} (HTTP {response.status_code})")
        return True
