"""
Host game-client query surface.

The collector never talks to the game directly. Whatever embeds it (a deck
tracker plugin bridge, a replay harness, a test) implements GameHost and
hands out Entity objects carrying the game's tag values. Everything here is
read-only from the collector's point of view.
"""

import dataclasses
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Dict, List, Optional


class GameTag(Enum):
    """Entity tags the collector reads. The host maps its own tag ids onto these."""
    PLAYER_ID = auto()
    CONTROLLER = auto()
    HEALTH = auto()
    ARMOR = auto()
    DAMAGE = auto()
    ATK = auto()
    ZONE_POSITION = auto()
    PLAYSTATE = auto()
    PLAYER_LEADERBOARD_PLACE = auto()
    PLAYER_TRIPLES = auto()
    PLAYER_TECH_LEVEL = auto()
    NEXT_OPPONENT_PLAYER_ID = auto()
    NUM_MINIONS_PLAYED_THIS_TURN = auto()
    NUM_SPELLS_PLAYED_THIS_GAME = auto()
    NUM_RESOURCES_SPENT_THIS_GAME = auto()
    TAUNT = auto()
    DIVINE_SHIELD = auto()
    REBORN = auto()
    POISONOUS = auto()
    VENOMOUS = auto()
    ATTACHED = auto()


class GameMode(Enum):
    UNKNOWN = auto()
    BATTLEGROUNDS = auto()
    RANKED = auto()
    ARENA = auto()
    OTHER = auto()


class Region(Enum):
    UNKNOWN = auto()
    US = auto()
    EU = auto()
    ASIA = auto()
    CHINA = auto()

    @property
    def short_name(self) -> str:
        """Region string used in match records: US, EU, everything else AP."""
        if self is Region.US:
            return "US"
        if self is Region.EU:
            return "EU"
        return "AP"


class ActivePlayer(Enum):
    """Which side a turn-start event belongs to."""
    PLAYER = auto()
    OPPONENT = auto()


class Step(Enum):
    """Subset of the game's STEP tag values the collector cares about."""
    INVALID = auto()
    BEGIN_MULLIGAN = auto()
    MAIN_READY = auto()
    MAIN_START = auto()
    MAIN_ACTION = auto()
    MAIN_COMBAT = auto()
    MAIN_END = auto()
    FINAL_GAMEOVER = auto()


# PLAYSTATE tag values
PLAYSTATE_PLAYING = 1
PLAYSTATE_WINNING = 2
PLAYSTATE_LOSING = 3
PLAYSTATE_WON = 4
PLAYSTATE_LOST = 5
PLAYSTATE_TIED = 6
PLAYSTATE_DISCONNECTED = 7
PLAYSTATE_CONCEDED = 8

ANOMALY_CARD_TYPE = "Battleground_Anomaly"


@dataclasses.dataclass
class Entity:
    """A game entity as exposed by the host: identity plus a bag of tags."""
    entity_id: int
    card_id: str = ""
    name: str = ""
    tags: Dict[GameTag, int] = dataclasses.field(default_factory=dict)
    is_player: bool = False
    is_hero: bool = False
    is_minion: bool = False
    is_in_play: bool = False

    def get_tag(self, tag: GameTag) -> int:
        return self.tags.get(tag, 0)

    def has_tag(self, tag: GameTag) -> bool:
        """A tag counts as present only when it carries a non-zero value."""
        return self.get_tag(tag) > 0

    def is_controlled_by(self, controller: int) -> bool:
        return self.get_tag(GameTag.CONTROLLER) == controller


@dataclasses.dataclass
class CardInfo:
    """Card metadata delivered with entity-created-in-play events."""
    card_id: str
    name: str = ""
    card_type: str = ""


@dataclasses.dataclass
class MatchStats:
    """The host's current-game statistics (rating fields only)."""
    rating: int = 0
    rating_after: int = 0


@dataclasses.dataclass
class RatedGame:
    """One completed game from the host's match-history accessor."""
    rating_before: int
    rating_after: int


class GameHost(ABC):
    """
    Read-only view of the running game.

    Implementations must be safe to call from the event-feed thread and from
    the collector's deferred task threads.
    """

    @property
    @abstractmethod
    def game_mode(self) -> GameMode:
        ...

    @property
    @abstractmethod
    def region(self) -> Region:
        ...

    @abstractmethod
    def turn_number(self) -> int:
        ...

    @abstractmethod
    def entities(self) -> List[Entity]:
        ...

    @abstractmethod
    def player_name(self) -> str:
        ...

    @abstractmethod
    def player_hero(self) -> Optional[Entity]:
        ...

    @abstractmethod
    def opponent_hero(self) -> Optional[Entity]:
        ...

    @abstractmethod
    def current_step(self) -> Step:
        ...

    def rating_info(self) -> Optional[int]:
        """Dedicated Battlegrounds rating accessor; None when the host has none yet."""
        return None

    def match_stats(self) -> Optional[MatchStats]:
        return None

    def match_history(self) -> List[RatedGame]:
        return []

    def player_entity(self) -> Optional[Entity]:
        for entity in self.entities():
            if entity.is_player:
                return entity
        return None

    def leaderboard_entities(self) -> List[Entity]:
        """Every entity currently holding a leaderboard place."""
        return [e for e in self.entities() if e.get_tag(GameTag.PLAYER_LEADERBOARD_PLACE) != 0]
