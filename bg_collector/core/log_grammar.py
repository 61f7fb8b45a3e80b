"""
Grammar of the deck tracker's log lines the collector scrapes.

The tracker's log is written by unrelated subsystems (game event handling,
board snapshotting, the combat simulator), so its format is only
semi-stable. Every pattern lives here, behind ``parse_line``, so a format
change touches this module only.
"""

import dataclasses
import re
from typing import Optional, Union

from .domain.turns import CombatResult, CombatResultData, LethalResult, SimulationData

# Cheap substring guards run before any regex: most log lines match none of them.
GAME_START_MARKER = "GameEventHandler.HandleGameStart >> --- Game start ---"
TURN_MARKER = "OnTurnStart - Turn"
OPPONENT_SNAPSHOT_MARKER = "BattlegroundsBoardState.SnapshotCurrentBoard"
SIMULATION_START_MARKER = "BobsBuddyInvoker.RunAndDisplaySimulationAsync >> Running simulation"
COMBAT_START_MARKER = "BobsBuddyInvoker.StartCombat"
COMBAT_VALIDATION_MARKER = "BobsBuddyInvoker.ValidateSimulationResultAsync"

TURN_PATTERN = re.compile(r'OnTurnStart - Turn (\d+)')
OPPONENT_SNAPSHOT_PATTERN = re.compile(
    r'BattlegroundsBoardState\.SnapshotCurrentBoard >> Snapshotting board state for (.*?) with player id (\d+)'
)
COMBAT_START_PATTERN = re.compile(r'BobsBuddyInvoker\.StartCombat >> ([\w-]+)')
COMBAT_VALIDATION_PATTERN = re.compile(
    r'BobsBuddyInvoker\.ValidateSimulationResultAsync >> result=(\w+), lethalResult=(\w+)'
)
SIMULATION_RESULT_PATTERN = re.compile(
    r'WinRate=(\d+(?:\.\d+)?)% \(Lethal=(\d+(?:\.\d+)?)%\), '
    r'TieRate=(\d+(?:\.\d+)?)%, '
    r'LossRate=(\d+(?:\.\d+)?)% \(Lethal=(\d+(?:\.\d+)?)%\)'
)


@dataclasses.dataclass(frozen=True)
class GameStart:
    pass


@dataclasses.dataclass(frozen=True)
class TurnStart:
    turn: int


@dataclasses.dataclass(frozen=True)
class OpponentSnapshot:
    opponent_name: str
    opponent_id: str


@dataclasses.dataclass(frozen=True)
class SimulationStarted:
    pass


@dataclasses.dataclass(frozen=True)
class CombatStarted:
    simulation_id: str


@dataclasses.dataclass(frozen=True)
class SimulationResult:
    data: SimulationData


@dataclasses.dataclass(frozen=True)
class CombatValidation:
    data: CombatResultData


LogEvent = Union[
    GameStart, TurnStart, OpponentSnapshot, SimulationStarted,
    CombatStarted, SimulationResult, CombatValidation,
]


def is_game_start(line: str) -> bool:
    return GAME_START_MARKER in line


def parse_line(line: str) -> Optional[LogEvent]:
    """
    Classify one log line.

    Returns:
        The structured event, or None for lines the collector does not use
        (including recognised markers whose payload fails to match).
    """
    if not line:
        return None

    if GAME_START_MARKER in line:
        return GameStart()

    if TURN_MARKER in line:
        match = TURN_PATTERN.search(line)
        return TurnStart(int(match.group(1))) if match else None

    if OPPONENT_SNAPSHOT_MARKER in line:
        match = OPPONENT_SNAPSHOT_PATTERN.search(line)
        return OpponentSnapshot(match.group(1), match.group(2)) if match else None

    if SIMULATION_START_MARKER in line:
        return SimulationStarted()

    if COMBAT_START_MARKER in line:
        match = COMBAT_START_PATTERN.search(line)
        return CombatStarted(match.group(1)) if match else None

    if COMBAT_VALIDATION_MARKER in line:
        match = COMBAT_VALIDATION_PATTERN.search(line)
        if not match:
            return None
        combat = CombatResult.from_keyword(match.group(1))
        lethal = LethalResult.from_keyword(match.group(2))
        if combat is None or lethal is None:
            return None
        return CombatValidation(CombatResultData(combat, lethal))

    if "WinRate=" in line and "TieRate=" in line and "LossRate=" in line:
        match = SIMULATION_RESULT_PATTERN.search(line)
        if not match:
            return None
        return SimulationResult(SimulationData(
            win_rate=float(match.group(1)),
            their_death_rate=float(match.group(2)),
            tie_rate=float(match.group(3)),
            loss_rate=float(match.group(4)),
            my_death_rate=float(match.group(5)),
        ))

    return None
