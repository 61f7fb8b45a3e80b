"""
Domain models for the Battlegrounds game collector.

Pure data: health snapshots, per-turn records and their store, and the
match-scoped session and record. Nothing in here talks to the host, reads
files or touches the network.
"""

from .health import HealthSnapshot, snapshot_healths, find_snapshot
from .turns import (
    TurnPhase,
    CombatResult,
    LethalResult,
    SimulationData,
    CombatResultData,
    TurnRecord,
    TurnRecordStore,
)
from .match import BoardMinion, MatchRecord, MatchSession, UNKNOWN_HERO, NO_ANOMALY

__all__ = [
    "HealthSnapshot",
    "snapshot_healths",
    "find_snapshot",
    "TurnPhase",
    "CombatResult",
    "LethalResult",
    "SimulationData",
    "CombatResultData",
    "TurnRecord",
    "TurnRecordStore",
    "BoardMinion",
    "MatchRecord",
    "MatchSession",
    "UNKNOWN_HERO",
    "NO_ANOMALY",
]
