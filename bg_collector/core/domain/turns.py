"""
Per-turn records and the ordered store that holds them for one match.

A TurnRecord starts almost empty when its turn first begins and is enriched
in place as more information arrives: health snapshots and resource counters
from the live host, opponent ids from the host or the tracker log, simulation
odds and the validated combat outcome from the tracker log, and finally the
hero damage once the next turn's snapshot makes the fight attributable.
"""

import bisect
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .health import HealthSnapshot


class TurnPhase(Enum):
    """Sub-phase of a turn, as signalled by the host's turn-start events."""
    PLAYER_TURN = "PlayerTurn"
    OPPONENT_TURN = "OpponentTurn"


class CombatResult(Enum):
    WIN = "Win"
    LOSS = "Loss"
    TIE = "Tie"

    @classmethod
    def from_keyword(cls, keyword: str) -> Optional["CombatResult"]:
        for member in cls:
            if member.value.lower() == keyword.lower():
                return member
        return None


class LethalResult(Enum):
    NO_ONE_DIED = "NoOneDied"
    OPPONENT_DIED = "OpponentDied"
    FRIENDLY_DIED = "FriendlyDied"

    @classmethod
    def from_keyword(cls, keyword: str) -> Optional["LethalResult"]:
        for member in cls:
            if member.value.lower() == keyword.lower():
                return member
        return None


@dataclass(frozen=True)
class SimulationData:
    """Simulated odds for the upcoming fight, in percent."""
    win_rate: float = 0.0
    their_death_rate: float = 0.0
    tie_rate: float = 0.0
    loss_rate: float = 0.0
    my_death_rate: float = 0.0


@dataclass(frozen=True)
class CombatResultData:
    combat_result: CombatResult
    lethal_result: LethalResult


@dataclass
class TurnRecord:
    """Everything reconstructed about a single turn."""

    turn: int
    phase: TurnPhase = TurnPhase.PLAYER_TURN

    opponent_id: Optional[str] = None
    hero_damage: int = 0  # positive: dealt to opponent, negative: taken

    # Simulation odds (from the tracker log)
    win_rate: float = 0.0
    tie_rate: float = 0.0
    loss_rate: float = 0.0
    their_death_rate: float = 0.0
    my_death_rate: float = 0.0
    has_simulation_results: bool = False

    # Validated outcome (from the tracker log)
    actual_combat_result: Optional[CombatResult] = None
    actual_lethal_result: Optional[LethalResult] = None
    has_combat_results: bool = False

    # Resource counters, refreshed during the player's own sub-phase only
    minions_played_this_turn: int = 0
    spells_played_this_game: int = 0
    resources_spent_this_game: int = 0
    tavern_tier: int = 0

    pre_combat_healths: List[HealthSnapshot] = field(default_factory=list)
    player_healths: List[HealthSnapshot] = field(default_factory=list)

    def update_simulation_results(self, sim: SimulationData):
        self.win_rate = sim.win_rate
        self.their_death_rate = sim.their_death_rate
        self.tie_rate = sim.tie_rate
        self.loss_rate = sim.loss_rate
        self.my_death_rate = sim.my_death_rate
        self.has_simulation_results = True

    def update_combat_results(self, combat: CombatResultData):
        self.actual_combat_result = combat.combat_result
        self.actual_lethal_result = combat.lethal_result
        self.has_combat_results = True

    def capture_pre_combat_health(self, snapshots: List[HealthSnapshot]) -> bool:
        """
        Store the pre-combat snapshot the next turn's attribution will diff against.

        Captured once only; later calls are ignored so a second opponent
        sub-phase event cannot move the baseline.

        Returns:
            True if the snapshot was stored by this call
        """
        if self.pre_combat_healths or not snapshots:
            return False
        self.pre_combat_healths = list(snapshots)
        return True

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape of the record. Health snapshots are working data and stay out."""
        return {
            "turn": self.turn,
            "phase": self.phase.value,
            "opponentId": self.opponent_id,
            "heroDamage": self.hero_damage,
            "winRate": self.win_rate,
            "tieRate": self.tie_rate,
            "lossRate": self.loss_rate,
            "theirDeathRate": self.their_death_rate,
            "myDeathRate": self.my_death_rate,
            "hasSimulationResults": self.has_simulation_results,
            "actualCombatResult": self.actual_combat_result.value if self.actual_combat_result else None,
            "actualLethalResult": self.actual_lethal_result.value if self.actual_lethal_result else None,
            "hasCombatResults": self.has_combat_results,
            "numMinionsPlayedThisTurn": self.minions_played_this_turn,
            "numSpellsPlayedThisGame": self.spells_played_this_game,
            "numResourcesSpentThisGame": self.resources_spent_this_game,
            "tavernTier": self.tavern_tier,
        }


class TurnRecordStore:
    """
    Ordered, turn-keyed collection of TurnRecords for one match.

    Thread-safe: the event-feed thread and deferred log parses both write
    into it, so every operation holds the store lock. The lock is
    re-entrant so callers can group several operations in ``with store.lock``.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._records: List[TurnRecord] = []
        self._turns: List[int] = []  # parallel sorted key list for bisect
        self._last_inserted: Optional[TurnRecord] = None

    def get_or_create(self, turn: int, phase: TurnPhase) -> TurnRecord:
        """
        Return the record for ``turn``, creating it if needed.

        An existing record has its phase updated. A new record is inserted
        at its turn-number position, so the store stays ordered even if the
        host skips or repeats a turn number.
        """
        with self.lock:
            record = self.by_turn(turn)
            if record is not None:
                record.phase = phase
                return record
            record = TurnRecord(turn=turn, phase=phase)
            index = bisect.bisect_left(self._turns, turn)
            self._turns.insert(index, turn)
            self._records.insert(index, record)
            self._last_inserted = record
            return record

    def by_turn(self, turn: int) -> Optional[TurnRecord]:
        with self.lock:
            index = bisect.bisect_left(self._turns, turn)
            if index < len(self._turns) and self._turns[index] == turn:
                return self._records[index]
            return None

    def last(self) -> Optional[TurnRecord]:
        """The most recently inserted record (not necessarily the highest turn)."""
        with self.lock:
            return self._last_inserted

    def records(self) -> List[TurnRecord]:
        """Snapshot of the records in turn order."""
        with self.lock:
            return list(self._records)

    def clear(self):
        with self.lock:
            self._records.clear()
            self._turns.clear()
            self._last_inserted = None

    def __len__(self) -> int:
        with self.lock:
            return len(self._records)

    def __iter__(self) -> Iterator[TurnRecord]:
        return iter(self.records())
