"""
Match lifecycle controller.

Owns the per-match session and drives everything else from the host's event
feed: the phase correlator on every turn start, the tracker log parser on a
trailing delay, and the end-of-game finalization that produces one
MatchRecord per Battlegrounds match.

Finalization is split between the game-end handler and deferred tasks. The
handler does the work that must see the board as it is at game end
(placement, final board, one log parse); the rating settlement and a
trailing log parse run later, and the record is only assembled once both
have finished.
"""

import datetime
import logging
import threading
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional

from ..config.settings import CollectorSettings
from .correlator import PhaseCorrelator
from .domain.match import (
    NO_ANOMALY, UNKNOWN_HERO, BoardMinion, MatchRecord, MatchSession, format_game_end_date,
)
from .events import HostEvent, HostEventBus, HostEventType, Subscription
from .host import (
    ANOMALY_CARD_TYPE, PLAYSTATE_CONCEDED, PLAYSTATE_LOST, ActivePlayer, CardInfo, Entity,
    GameHost, GameMode, GameTag,
)
from .log_tail import LogTailParser
from .sinks import MatchRecordWriter, MatchSubmitter
from .tasks import DeferredTask, DeferredTaskScheduler
from .version import get_version

logger = logging.getLogger(__name__)


class MatchState(Enum):
    IDLE = auto()
    IN_MATCH = auto()
    FINALIZING = auto()


class MatchLifecycleController:
    """
    Reacts to host events for one match at a time.

    Every match gets a fresh MatchSession and a new generation number.
    Deferred tasks carry the generation they were scheduled under and do
    nothing once a newer match has started.
    """

    def __init__(self, host: GameHost, settings: Optional[CollectorSettings] = None,
                 log_parser: Optional[LogTailParser] = None,
                 writer: Optional[MatchRecordWriter] = None,
                 submitter: Optional[MatchSubmitter] = None):
        self.host = host
        self.settings = settings or CollectorSettings()
        self.log_parser = log_parser or LogTailParser.from_settings(self.settings)
        self.writer = writer or MatchRecordWriter(self.settings.output_dir)
        if submitter is None and self.settings.submit_enabled:
            submitter = MatchSubmitter(self.settings.api_url, timeout=self.settings.request_timeout)
        self.submitter = submitter

        self.state = MatchState.IDLE
        self.generation = 0
        self.session: Optional[MatchSession] = None
        self.correlator = PhaseCorrelator(host, MatchSession(generation=0).store,
                                          self.settings.shop_placeholder_hero_ids)
        self.scheduler = DeferredTaskScheduler(self.is_current)

        self.last_record: Optional[MatchRecord] = None
        self.last_output_path: Optional[Path] = None

        self._lock = threading.RLock()
        self._subscription: Optional[Subscription] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self, bus: HostEventBus) -> Subscription:
        """Register every handler on ``bus`` through one Subscription."""
        self.detach()
        self._subscription = (
            bus.subscription()
            .on(HostEventType.GAME_START, lambda e: self.on_match_start())
            .on(HostEventType.GAME_END, lambda e: self.on_match_end())
            .on(HostEventType.IN_MENU, lambda e: self.on_in_menu())
            .on(HostEventType.TURN_START, self._on_turn_start_event)
            .on(HostEventType.ENTITY_CREATED_IN_PLAY, self._on_entity_created_event)
            .on(HostEventType.ENTITY_WILL_TAKE_DAMAGE, self._on_damage_event)
        )
        logger.info("Collector attached to host event feed")
        return self._subscription

    def detach(self):
        """Stop reacting to the host. The current session, if any, goes inactive."""
        with self._lock:
            if self._subscription is not None:
                self._subscription.close()
                self._subscription = None
                logger.info("Collector detached from host event feed")
            if self.session is not None:
                self.session.active = False

    def _on_turn_start_event(self, event: HostEvent):
        self.on_turn_start(event.data)

    def _on_entity_created_event(self, event: HostEvent):
        self.on_entity_created(event.data)

    def _on_damage_event(self, event: HostEvent):
        entity, amount = event.data
        self.on_entity_will_take_damage(entity, amount)

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return (generation == self.generation
                    and self.session is not None
                    and self.session.active)

    def _live_session(self) -> Optional[MatchSession]:
        if self.state == MatchState.IDLE or self.session is None or not self.session.active:
            return None
        return self.session

    def wait_for_pending(self, timeout: Optional[float] = None) -> bool:
        """Block until every deferred task has run, been skipped or been cancelled."""
        return self.scheduler.wait_all(timeout)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_match_start(self):
        with self._lock:
            mode = self.host.game_mode
            if mode != GameMode.BATTLEGROUNDS:
                logger.info(f"Ignoring game in mode {mode.name}")
                if self.session is not None:
                    self.session.active = False
                self.state = MatchState.IDLE
                return

            if self.state != MatchState.IDLE:
                logger.warning(f"Game start while {self.state.name}; abandoning previous match")

            self.generation += 1
            if self.session is not None:
                self.session.active = False
            session = MatchSession(generation=self.generation)
            session.seed()
            self.session = session
            self.correlator.reset(session.store)
            self._update_hero(session)
            self._capture_starting_rating(session)
            self.state = MatchState.IN_MATCH
            logger.info(f"Battlegrounds game started (generation {self.generation})")

    def on_in_menu(self):
        with self._lock:
            session = self._live_session()
            if session is not None and session.starting_mmr is None:
                self._capture_starting_rating(session)

    def on_turn_start(self, active: ActivePlayer):
        with self._lock:
            session = self._live_session()
            if session is None or self.state != MatchState.IN_MATCH:
                return
            self._update_hero(session)
            self._update_triples(session)
            self.correlator.on_turn_start(active)
            self._schedule_log_parse(session, "trailing-log-parse")

    def on_entity_created(self, card: Optional[CardInfo]):
        with self._lock:
            session = self._live_session()
            if session is None or card is None:
                return
            if card.card_type == ANOMALY_CARD_TYPE:
                session.anomaly_id = card.card_id
                session.anomaly_name = card.name
                logger.info(f"Anomaly detected: {card.name} ({card.card_id})")

    def on_entity_will_take_damage(self, entity: Optional[Entity], amount: int):
        with self._lock:
            if self._live_session() is None:
                return
            self.correlator.on_damage(entity, amount)

    def on_match_end(self):
        with self._lock:
            session = self._live_session()
            if session is None or self.state != MatchState.IN_MATCH:
                return
            self.state = MatchState.FINALIZING
            logger.info(f"Battlegrounds game ended (generation {session.generation}), finalizing")

            player = self.host.player_entity()
            self._guarded("placement", lambda: self._capture_placement(session, player))
            self._guarded("final board", lambda: self._capture_final_board(session, player))
            self._guarded("log parse", lambda: self._parse_log(session))
            self._guarded("combat window", self.correlator.poll_combat)
            session.damage_dealt_live = self.correlator.total_damage_dealt

            generation = session.generation
            mmr_task = self.scheduler.schedule(
                "mmr-settlement", generation, self.settings.mmr_settle_delay,
                lambda: self._settle_mmr(session))
            parse_task = self._schedule_log_parse(session, "final-log-parse")
            self.scheduler.schedule(
                "emit-record", generation, 0.0,
                lambda: self._emit(session, [mmr_task, parse_task]))

    # ------------------------------------------------------------------
    # Host reads
    # ------------------------------------------------------------------

    def _update_hero(self, session: MatchSession):
        hero = self.host.player_hero()
        if hero is None or not hero.card_id:
            return
        if hero.card_id in self.settings.shop_placeholder_hero_ids:
            return
        if hero.card_id != session.hero_id:
            logger.info(f"Hero: {hero.name} ({hero.card_id})")
        session.hero_id = hero.card_id
        session.hero_name = hero.name

    def _update_triples(self, session: MatchSession):
        player = self.host.player_entity()
        if player is None:
            return
        controller = player.get_tag(GameTag.CONTROLLER)
        counts = [e.get_tag(GameTag.PLAYER_TRIPLES) for e in self.host.entities()
                  if e is player or (controller and e.is_controlled_by(controller))]
        session.triples_created = max(counts, default=0)

    def _capture_starting_rating(self, session: MatchSession):
        rating = self.host.rating_info()
        if rating:
            session.starting_mmr = rating
            logger.info(f"Starting rating: {rating}")
            return
        stats = self.host.match_stats()
        if stats is not None and stats.rating:
            session.starting_mmr = stats.rating
            logger.info(f"Starting rating from match stats: {stats.rating}")
            return
        logger.info("No rating available yet; starting rating unknown")

    def _capture_placement(self, session: MatchSession, player: Optional[Entity]):
        session.placement = compute_placement(self.host.entities(), player)
        logger.info(f"Placement: {session.placement}")

    def _capture_final_board(self, session: MatchSession, player: Optional[Entity]):
        session.final_board = capture_final_board(self.host.entities(), player)
        logger.info(f"Final board ({len(session.final_board)} minions):")
        for minion in session.final_board:
            logger.info(f"  {minion.describe()}")

    def _parse_log(self, session: MatchSession):
        summary = self.log_parser.parse(session.store, self.host.turn_number())
        if summary is not None:
            logger.debug(f"Log parse applied {summary.applied} updates")

    # ------------------------------------------------------------------
    # Deferred work
    # ------------------------------------------------------------------

    def _schedule_log_parse(self, session: MatchSession, name: str) -> DeferredTask:
        return self.scheduler.schedule(
            name, session.generation, self.settings.trailing_parse_delay,
            lambda: self._parse_log(session))

    def _settle_mmr(self, session: MatchSession):
        history = self.host.match_history()
        if not history:
            logger.info("No completed game in match history; keeping last known rating")
            if session.final_mmr is None and session.starting_mmr is not None:
                session.final_mmr = session.starting_mmr
            return
        last = history[-1]
        session.starting_mmr = last.rating_before
        session.final_mmr = last.rating_after
        session.mmr_gained = last.rating_after - last.rating_before
        logger.info(
            f"Rating settled: {last.rating_before} -> {last.rating_after} ({session.mmr_gained:+d})"
        )

    def _emit(self, session: MatchSession, dependencies: List[DeferredTask]):
        for task in dependencies:
            task.wait()
        if not self.is_current(session.generation):
            logger.info(f"Match generation {session.generation} superseded; not emitting record")
            return

        now = datetime.datetime.now()
        record = self._guarded("record assembly", lambda: self.build_record(session, now))
        if record is not None:
            self.last_record = record
            self.last_output_path = self._guarded("record file", lambda: self.writer.write(record, now))
            if self.submitter is not None:
                self._guarded("record submission", lambda: self.submitter.submit(record))

        with self._lock:
            if self.is_current(session.generation):
                session.store.clear()
                self.state = MatchState.IDLE
                logger.info(f"Match generation {session.generation} finished")

    def build_record(self, session: MatchSession, now: Optional[datetime.datetime] = None) -> MatchRecord:
        now = now or datetime.datetime.now()
        with session.store.lock:
            turns = tuple(session.store.records())
        starting = session.starting_mmr or 0
        final = session.final_mmr if session.final_mmr is not None else starting
        return MatchRecord(
            player_identifier=self.host.player_name() or "",
            placement=session.placement,
            starting_mmr=starting,
            final_mmr=final,
            mmr_gained=session.mmr_gained,
            game_duration_seconds=session.duration_seconds(now),
            game_end_date=format_game_end_date(now),
            hero_played=session.hero_id or UNKNOWN_HERO,
            hero_played_name=session.hero_name or UNKNOWN_HERO,
            anomaly_id=session.anomaly_id or NO_ANOMALY,
            anomaly_name=session.anomaly_name or NO_ANOMALY,
            triples_created=session.triples_created,
            region=self.host.region.short_name,
            damage_dealt_live=session.damage_dealt_live,
            collector_version=get_version(),
            final_board=tuple(session.final_board),
            turns=turns,
        )

    def _guarded(self, step: str, func):
        try:
            return func()
        except Exception as e:
            logger.error(f"Error during {step}: {e}", exc_info=True)
            return None


def compute_placement(entities: List[Entity], player: Optional[Entity]) -> int:
    """
    Final placement of ``player``.

    Tries the leaderboard tag on any entity sharing the player's id, then the
    player entity's own tag, and finally counts the opponents still standing.
    """
    if player is None:
        logger.info("No player entity at game end; placement unknown")
        return 0
    player_id = player.get_tag(GameTag.PLAYER_ID)

    for entity in entities:
        if (player_id and entity.get_tag(GameTag.PLAYER_ID) == player_id
                and entity.has_tag(GameTag.PLAYER_LEADERBOARD_PLACE)):
            return entity.get_tag(GameTag.PLAYER_LEADERBOARD_PLACE)

    if player.has_tag(GameTag.PLAYER_LEADERBOARD_PLACE):
        return player.get_tag(GameTag.PLAYER_LEADERBOARD_PLACE)

    alive = sum(
        1 for e in entities
        if e.has_tag(GameTag.PLAYER_LEADERBOARD_PLACE)
        and not (player_id and e.get_tag(GameTag.PLAYER_ID) == player_id)
        and e.get_tag(GameTag.PLAYSTATE) not in (PLAYSTATE_CONCEDED, PLAYSTATE_LOST)
    )
    logger.info(f"Placement derived from {alive} players still alive")
    return alive + 1


def capture_final_board(entities: List[Entity], player: Optional[Entity]) -> List[BoardMinion]:
    """The player's in-play minions in board order, with attached enchantments."""
    if player is None:
        return []
    controller = player.get_tag(GameTag.CONTROLLER)
    if not controller:
        return []
    minions = sorted(
        (e for e in entities if e.is_in_play and e.is_minion and e.is_controlled_by(controller)),
        key=lambda e: e.get_tag(GameTag.ZONE_POSITION),
    )
    board = []
    for minion in minions:
        enchantments = tuple(
            e.card_id for e in entities
            if e is not minion and e.get_tag(GameTag.ATTACHED) == minion.entity_id
        )
        board.append(BoardMinion(
            card_id=minion.card_id,
            name=minion.name or "Unknown",
            attack=minion.get_tag(GameTag.ATK),
            health=minion.get_tag(GameTag.HEALTH),
            taunt=minion.has_tag(GameTag.TAUNT),
            divine_shield=minion.has_tag(GameTag.DIVINE_SHIELD),
            reborn=minion.has_tag(GameTag.REBORN),
            poisonous=minion.has_tag(GameTag.POISONOUS),
            venomous=minion.has_tag(GameTag.VENOMOUS),
            enchantments=enchantments,
        ))
    return board
