"""
Phase and combat correlation for Battlegrounds turns.

The host only tells us when a sub-phase starts and whose it is. Combat
itself has no start/end signal, so it is inferred from the board: the step
tag says MAIN_COMBAT, a real opponent hero (not the shop keeper) is in play,
and there is at least one minion on either board.

Hero damage is never read from a combat event. It is reconstructed by
diffing health snapshots one full turn apart: the previous turn's
pre-combat snapshot against the current turn's snapshot, for ourselves and
for the opponent recorded on the previous turn.
"""

import logging
import threading
from enum import Enum, auto
from typing import Iterable, Optional

from .domain.health import HealthSnapshot, find_snapshot, snapshot_healths
from .domain.turns import TurnPhase, TurnRecord, TurnRecordStore
from .host import ActivePlayer, Entity, GameHost, GameTag, Step

logger = logging.getLogger(__name__)


class CombatState(Enum):
    NO_PHASE = auto()
    SHOP_PHASE = auto()
    COMBAT_PHASE = auto()


def attribute_hero_damage(our_previous: HealthSnapshot, our_current: HealthSnapshot,
                          their_previous: HealthSnapshot, their_current: HealthSnapshot) -> int:
    """
    Signed hero damage for one fight.

    Opponent losing health wins over us losing health; no change is a tie.
    """
    their_loss = their_previous.total_health - their_current.total_health
    if their_loss > 0:
        return their_loss
    our_loss = our_previous.total_health - our_current.total_health
    if our_loss > 0:
        return -our_loss
    return 0


class PhaseCorrelator:
    """Turns the host's turn-start feed into enriched TurnRecords for one match."""

    def __init__(self, host: GameHost, store: TurnRecordStore,
                 shop_placeholder_hero_ids: Iterable[str] = ()):
        self.host = host
        self.store = store
        self.shop_placeholder_hero_ids = set(shop_placeholder_hero_ids)
        self.state = CombatState.NO_PHASE
        self.engaged_opponent_id: Optional[str] = None
        self.total_damage_dealt = 0
        self._window_damage = 0
        self._lock = threading.RLock()

    def reset(self, store: TurnRecordStore):
        """Start over for a new match with its own store."""
        with self._lock:
            self.store = store
            self.state = CombatState.NO_PHASE
            self.engaged_opponent_id = None
            self.total_damage_dealt = 0
            self._window_damage = 0

    # ------------------------------------------------------------------
    # Host reads
    # ------------------------------------------------------------------

    def _self_player_id(self, player_entity: Optional[Entity]) -> Optional[int]:
        if player_entity is None:
            return None
        player_id = player_entity.get_tag(GameTag.PLAYER_ID)
        return player_id or None

    def _live_opponent_hero(self) -> Optional[Entity]:
        """The opponent hero, unless it is missing or the shop keeper placeholder."""
        hero = self.host.opponent_hero()
        if hero is None or hero.card_id in self.shop_placeholder_hero_ids:
            return None
        return hero

    def is_combat_condition(self) -> bool:
        if self.host.current_step() != Step.MAIN_COMBAT:
            return False
        if self._live_opponent_hero() is None:
            return False
        return any(e.is_minion and e.is_in_play for e in self.host.entities())

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def on_turn_start(self, active: ActivePlayer) -> TurnRecord:
        """
        Handle one sub-phase boundary.

        Returns:
            The TurnRecord for the host's current turn
        """
        with self._lock:
            turn = self.host.turn_number()
            phase = TurnPhase.PLAYER_TURN if active == ActivePlayer.PLAYER else TurnPhase.OPPONENT_TURN
            player_entity = self.host.player_entity()

            with self.store.lock:
                record = self.store.get_or_create(turn, phase)

                snapshots = snapshot_healths(self.host.leaderboard_entities())
                record.player_healths = snapshots
                logger.debug(f"Turn {turn} {phase.value}: {len(snapshots)} leaderboard healths captured")

                if phase == TurnPhase.OPPONENT_TURN and record.capture_pre_combat_health(snapshots):
                    logger.info(f"Captured pre-combat health for turn {turn}")

                if player_entity is not None:
                    next_opponent = player_entity.get_tag(GameTag.NEXT_OPPONENT_PLAYER_ID)
                    if next_opponent > 0:
                        record.opponent_id = str(next_opponent)
                        logger.debug(f"Set opponent ID for turn {turn} to {next_opponent}")

                    if phase == TurnPhase.PLAYER_TURN:
                        record.minions_played_this_turn = player_entity.get_tag(GameTag.NUM_MINIONS_PLAYED_THIS_TURN)
                        record.spells_played_this_game = player_entity.get_tag(GameTag.NUM_SPELLS_PLAYED_THIS_GAME)
                        record.resources_spent_this_game = player_entity.get_tag(GameTag.NUM_RESOURCES_SPENT_THIS_GAME)
                        record.tavern_tier = player_entity.get_tag(GameTag.PLAYER_TECH_LEVEL)

                if phase == TurnPhase.PLAYER_TURN and self.state == CombatState.NO_PHASE:
                    self._transition(CombatState.SHOP_PHASE)

                self.attribute_previous_turn(turn, self._self_player_id(player_entity))

            self.poll_combat()
            return record

    def attribute_previous_turn(self, turn: int, self_player_id: Optional[int]) -> Optional[int]:
        """
        Write hero damage for turn ``turn - 1`` from its pre-combat snapshot.

        Returns:
            The attributed damage, or None when the data to attribute is missing
            (first turn, unresolved opponent, player not on the leaderboard).
        """
        with self.store.lock:
            current = self.store.by_turn(turn)
            previous = self.store.by_turn(turn - 1)
            if current is None or previous is None or self_player_id is None:
                return None
            if not previous.pre_combat_healths or not previous.opponent_id:
                return None

            ours_before = find_snapshot(previous.pre_combat_healths, self_player_id)
            ours_now = find_snapshot(current.player_healths, self_player_id)
            theirs_before = find_snapshot(previous.pre_combat_healths, previous.opponent_id)
            theirs_now = find_snapshot(current.player_healths, previous.opponent_id)
            if None in (ours_before, ours_now, theirs_before, theirs_now):
                logger.debug(
                    f"Missing health info for turn {previous.turn} damage: "
                    f"ours {ours_before is not None}/{ours_now is not None}, "
                    f"theirs {theirs_before is not None}/{theirs_now is not None}"
                )
                return None

            damage = attribute_hero_damage(ours_before, ours_now, theirs_before, theirs_now)
            if damage != previous.hero_damage:
                logger.info(
                    f"Turn {previous.turn} hero damage {damage:+d} vs opponent {previous.opponent_id} "
                    f"(us {ours_before.total_health}->{ours_now.total_health}, "
                    f"them {theirs_before.total_health}->{theirs_now.total_health})"
                )
            previous.hero_damage = damage
            return damage

    def poll_combat(self) -> CombatState:
        """Re-evaluate the inferred combat condition and apply any phase edge."""
        with self._lock:
            if self.state == CombatState.NO_PHASE:
                return self.state
            in_combat = self.is_combat_condition()
            if in_combat and self.state == CombatState.SHOP_PHASE:
                self._enter_combat()
            elif not in_combat and self.state == CombatState.COMBAT_PHASE:
                self._leave_combat()
            return self.state

    def on_damage(self, entity: Optional[Entity], amount: int):
        """Live damage feed; only hits on the engaged opponent's hero during combat count."""
        with self._lock:
            if entity is None or amount <= 0:
                return
            self.poll_combat()
            if self.state != CombatState.COMBAT_PHASE or not entity.is_hero:
                return
            if str(entity.get_tag(GameTag.PLAYER_ID)) == self.engaged_opponent_id:
                self._window_damage += amount
                logger.debug(f"Opponent hero {self.engaged_opponent_id} about to take {amount} damage")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, new_state: CombatState):
        logger.debug(f"Phase {self.state.name} -> {new_state.name}")
        self.state = new_state

    def _enter_combat(self):
        opponent = self._live_opponent_hero()
        self.engaged_opponent_id = str(opponent.get_tag(GameTag.PLAYER_ID)) if opponent else None
        self._window_damage = 0

        record = self.store.last()
        if record is not None:
            with self.store.lock:
                if record.capture_pre_combat_health(snapshot_healths(self.host.leaderboard_entities())):
                    logger.info(f"Captured pre-combat health for turn {record.turn} at combat start")
                if not record.opponent_id and self.engaged_opponent_id and self.engaged_opponent_id != "0":
                    record.opponent_id = self.engaged_opponent_id
        logger.info(f"Combat started against opponent {self.engaged_opponent_id}")
        self._transition(CombatState.COMBAT_PHASE)

    def _leave_combat(self):
        self.total_damage_dealt += self._window_damage
        logger.info(
            f"Combat ended against opponent {self.engaged_opponent_id}: "
            f"{self._window_damage} live damage this fight, {self.total_damage_dealt} total"
        )
        self._window_damage = 0
        self._transition(CombatState.SHOP_PHASE)
