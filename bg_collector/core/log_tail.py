"""
Tail parser for the deck tracker's log file.

The tracker log is the only place two facts appear: the combat simulator's
win/tie/loss odds for the upcoming fight, and the validated outcome once the
fight resolves. This module reads a bounded suffix of that file, finds the
current game inside it, and merges what it finds into the turn store.

It is a best-effort consumer: a locked, missing or half-written file costs
one poll's worth of data and nothing else.
"""

import dataclasses
import logging
import os
import time
from typing import Callable, Dict, List, Optional

from . import log_grammar
from .domain.turns import TurnRecordStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_BYTES = 500_000
DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.1


@dataclasses.dataclass
class LogParseSummary:
    """What a single parse pass found and applied."""
    game_start_index: int = -1
    lines_scanned: int = 0
    opponents_applied: int = 0
    simulations_applied: int = 0
    combat_results_applied: int = 0
    skipped_missing_turn: int = 0
    simulations_per_turn: Dict[int, int] = dataclasses.field(default_factory=dict)
    last_simulation_id: str = ""

    @property
    def applied(self) -> int:
        return self.opponents_applied + self.simulations_applied + self.combat_results_applied


class LogTailParser:
    """Reads the tail of the tracker log and back-fills TurnRecords."""

    def __init__(self, log_path: str,
                 window_bytes: int = DEFAULT_WINDOW_BYTES,
                 attempts: int = DEFAULT_ATTEMPTS,
                 backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        self.log_path = log_path
        self.window_bytes = window_bytes
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "LogTailParser":
        return cls(
            settings.hdt_log_path,
            window_bytes=settings.tail_window_bytes,
            attempts=settings.log_read_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        )

    def _read_window(self) -> str:
        """Read the last ``window_bytes`` of the file without locking out the writer."""
        with open(self.log_path, 'rb') as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            start = max(0, size - self.window_bytes)
            f.seek(start)
            data = f.read(self.window_bytes)
        text = data.decode('utf-8', errors='replace')
        if start > 0:
            # Window started mid-line; that fragment is unusable.
            newline = text.find('\n')
            text = text[newline + 1:] if newline != -1 else ""
        return text

    def read_tail(self) -> Optional[List[str]]:
        """
        Read the window with bounded retries.

        Returns:
            The window's non-empty lines, or None when the file is missing or
            every attempt failed.
        """
        if not os.path.exists(self.log_path):
            logger.info(f"Tracker log file not found at: {self.log_path}")
            return None

        for attempt in range(1, self.attempts + 1):
            try:
                text = self._read_window()
                return [line.rstrip('\r') for line in text.split('\n') if line.strip()]
            except OSError as e:
                if attempt < self.attempts:
                    logger.info(f"Failed to read tracker log on attempt {attempt}, retrying... ({e})")
                    self._sleep(self.backoff_seconds * attempt)
                else:
                    logger.info(f"Giving up on tracker log after {attempt} attempts: {e}")
        return None

    @staticmethod
    def find_game_start(lines: List[str]) -> int:
        """Index of the most recent game-start marker, or -1."""
        for i in range(len(lines) - 1, -1, -1):
            if log_grammar.is_game_start(lines[i]):
                return i
        return -1

    def parse(self, store: TurnRecordStore, current_turn: int) -> Optional[LogParseSummary]:
        """
        Parse the log tail and merge the current game's events into ``store``.

        Args:
            store: Turn records of the match in progress
            current_turn: Host turn number at parse time; used until the log
                itself shows a turn marker

        Returns:
            Summary of the pass, or None if nothing could be read. Never raises.
        """
        try:
            lines = self.read_tail()
            if lines is None:
                return None
            return self.apply_lines(lines, store, current_turn)
        except Exception as e:
            logger.error(f"Error parsing tracker log: {e}", exc_info=True)
            return None

    def apply_lines(self, lines: List[str], store: TurnRecordStore, current_turn: int) -> LogParseSummary:
        """Merge already-read log lines into ``store`` (the I/O-free half of ``parse``)."""
        summary = LogParseSummary()
        start = self.find_game_start(lines)
        summary.game_start_index = start
        if start == -1:
            # Long match: the marker scrolled out of the window, but every
            # line still in it is newer than the marker.
            logger.info("Game start marker not in tracker log window; parsing the whole window")
            start = 0

        turn = current_turn
        with store.lock:
            for line in lines[start:]:
                summary.lines_scanned += 1
                event = log_grammar.parse_line(line)
                if event is None:
                    continue

                if isinstance(event, log_grammar.TurnStart):
                    turn = event.turn
                    summary.simulations_per_turn.setdefault(turn, 0)
                    continue

                if isinstance(event, log_grammar.SimulationStarted):
                    summary.simulations_per_turn[turn] = summary.simulations_per_turn.get(turn, 0) + 1
                    continue

                if isinstance(event, log_grammar.CombatStarted):
                    summary.last_simulation_id = event.simulation_id
                    logger.debug(f"Combat simulation {event.simulation_id} started on turn {turn}")
                    continue

                if isinstance(event, log_grammar.GameStart):
                    continue

                record = store.by_turn(turn)
                if record is None:
                    summary.skipped_missing_turn += 1
                    logger.debug(f"No turn record for turn {turn}; skipping {type(event).__name__}")
                    continue

                if isinstance(event, log_grammar.OpponentSnapshot):
                    record.opponent_id = event.opponent_id
                    summary.opponents_applied += 1
                    logger.debug(f"Found opponent for turn {turn}: {event.opponent_name} (ID: {event.opponent_id})")
                elif isinstance(event, log_grammar.SimulationResult):
                    record.update_simulation_results(event.data)
                    summary.simulations_applied += 1
                    sim = event.data
                    logger.debug(
                        f"Turn {turn} simulation results: "
                        f"Win={sim.win_rate}% (Lethal={sim.their_death_rate}%), "
                        f"Tie={sim.tie_rate}%, Loss={sim.loss_rate}% (Lethal={sim.my_death_rate}%)"
                    )
                elif isinstance(event, log_grammar.CombatValidation):
                    record.update_combat_results(event.data)
                    summary.combat_results_applied += 1
                    logger.debug(
                        f"Turn {turn} combat validation: Result={event.data.combat_result.value}, "
                        f"Lethal={event.data.lethal_result.value}, SimulationId={summary.last_simulation_id}"
                    )

        if summary.simulations_per_turn:
            per_turn = ", ".join(f"turn {t}: {n}" for t, n in sorted(summary.simulations_per_turn.items()))
            logger.info(f"Simulations per turn - {per_turn}")
        if summary.applied == 0:
            logger.info("Tracker log parsed; no new opponent, simulation or combat lines for this game")
        return summary
