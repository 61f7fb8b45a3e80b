"""
Match-scoped domain models.

MatchSession holds every piece of mutable state that belongs to one match.
The controller builds a fresh session on each game start instead of
resetting fields in place, so a deferred task still holding the previous
session can never write into the new match.

MatchRecord is the immutable artifact emitted once the match is over.
"""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .turns import TurnPhase, TurnRecord, TurnRecordStore

UNKNOWN_HERO = "Unknown"
NO_ANOMALY = "None"
GAME_END_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class BoardMinion:
    """A minion on the player's final board."""

    card_id: str
    name: str = "Unknown"
    attack: int = 0
    health: int = 0
    taunt: bool = False
    divine_shield: bool = False
    reborn: bool = False
    poisonous: bool = False
    venomous: bool = False
    enchantments: Tuple[str, ...] = ()

    def describe(self) -> str:
        flags = [
            label for label, present in (
                ("Taunt", self.taunt),
                ("Divine Shield", self.divine_shield),
                ("Reborn", self.reborn),
                ("Poisonous", self.poisonous),
                ("Venomous", self.venomous),
            ) if present
        ]
        text = f"{self.name} ({self.card_id}) - {self.attack}/{self.health}"
        if flags:
            text += " [" + ", ".join(flags) + "]"
        if self.enchantments:
            text += f" [Enchantments: {', '.join(self.enchantments)}]"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cardId": self.card_id,
            "name": self.name,
            "attack": self.attack,
            "health": self.health,
            "isTaunt": self.taunt,
            "isDivineShield": self.divine_shield,
            "isReborn": self.reborn,
            "isPoisonous": self.poisonous,
            "isVenomous": self.venomous,
            "enchantments": list(self.enchantments),
        }


def format_game_end_date(moment: datetime.datetime) -> str:
    """``2025-01-31 21:04:05.12`` - hundredths of a second, like the tracker's own records."""
    return f"{moment.strftime(GAME_END_DATE_FORMAT)}.{moment.microsecond // 10000:02d}"


@dataclass(frozen=True)
class MatchRecord:
    """The consolidated record of one finished match."""

    player_identifier: str
    placement: int
    starting_mmr: int
    final_mmr: int
    mmr_gained: int
    game_duration_seconds: int
    game_end_date: str
    hero_played: str
    hero_played_name: str
    anomaly_id: str
    anomaly_name: str
    triples_created: int
    region: str
    damage_dealt_live: int = 0
    collector_version: str = ""
    final_board: Tuple[BoardMinion, ...] = ()
    turns: Tuple[TurnRecord, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerIdentifier": self.player_identifier,
            "placement": self.placement,
            "startingMmr": self.starting_mmr,
            "finalMmr": self.final_mmr,
            "mmrGained": self.mmr_gained,
            "gameDurationInSeconds": self.game_duration_seconds,
            "gameEndDate": self.game_end_date,
            "heroPlayed": self.hero_played,
            "heroPlayedName": self.hero_played_name,
            "anomalyId": self.anomaly_id,
            "anomalyName": self.anomaly_name,
            "triplesCreated": self.triples_created,
            "region": self.region,
            "damageDealtLive": self.damage_dealt_live,
            "collectorVersion": self.collector_version,
            "finalBoard": [minion.to_dict() for minion in self.final_board],
            "turns": [turn.to_dict() for turn in self.turns],
        }


@dataclass
class MatchSession:
    """Mutable state of the match currently being observed."""

    generation: int
    start_time: datetime.datetime = field(default_factory=datetime.datetime.now)
    store: TurnRecordStore = field(default_factory=TurnRecordStore)

    hero_id: Optional[str] = None
    hero_name: Optional[str] = None
    anomaly_id: Optional[str] = None
    anomaly_name: Optional[str] = None
    triples_created: int = 0

    starting_mmr: Optional[int] = None
    final_mmr: Optional[int] = None
    mmr_gained: int = 0

    placement: int = 0
    final_board: List[BoardMinion] = field(default_factory=list)
    damage_dealt_live: int = 0

    # Flipped off when the controller detaches; late callbacks check it.
    active: bool = True

    def seed(self):
        """Every match starts with turn 1 already present in the store."""
        self.store.clear()
        self.store.get_or_create(1, TurnPhase.PLAYER_TURN)

    def duration_seconds(self, now: Optional[datetime.datetime] = None) -> int:
        now = now or datetime.datetime.now()
        return max(0, int((now - self.start_time).total_seconds()))
