import unittest
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))
sys.path.append(str(Path(__file__).parent))

from bg_collector.core.correlator import CombatState, PhaseCorrelator, attribute_hero_damage
from bg_collector.core.domain import HealthSnapshot, TurnPhase, TurnRecordStore
from bg_collector.core.host import ActivePlayer, GameTag, Step
from fakes import FakeGameHost, hero, minion

SELF_ID = 3
OPPONENT_ID = 7


class TestAttributeHeroDamage(unittest.TestCase):
    def test_opponent_loss_wins(self):
        """Opponent losing health is attributed as positive damage."""
        damage = attribute_hero_damage(
            HealthSnapshot(SELF_ID, 30), HealthSnapshot(SELF_ID, 30),
            HealthSnapshot(OPPONENT_ID, 30), HealthSnapshot(OPPONENT_ID, 20),
        )
        self.assertEqual(damage, 10)

    def test_own_loss_is_negative(self):
        damage = attribute_hero_damage(
            HealthSnapshot(SELF_ID, 30), HealthSnapshot(SELF_ID, 18),
            HealthSnapshot(OPPONENT_ID, 30), HealthSnapshot(OPPONENT_ID, 30),
        )
        self.assertEqual(damage, -12)

    def test_no_change_is_tie(self):
        snapshot = HealthSnapshot(SELF_ID, 25, armor=3)
        other = HealthSnapshot(OPPONENT_ID, 14)
        self.assertEqual(attribute_hero_damage(snapshot, snapshot, other, other), 0)

    def test_armor_counts_toward_total(self):
        """Armor absorbed damage still registers as health lost."""
        damage = attribute_hero_damage(
            HealthSnapshot(SELF_ID, 30), HealthSnapshot(SELF_ID, 30),
            HealthSnapshot(OPPONENT_ID, 30, armor=5), HealthSnapshot(OPPONENT_ID, 30, armor=1),
        )
        self.assertEqual(damage, 4)


class TestPhaseCorrelator(unittest.TestCase):
    def setUp(self):
        self.host = FakeGameHost()
        self.me = hero(10, SELF_ID, place=4)
        self.them = hero(20, OPPONENT_ID, place=2)
        self.host.hero_entity = self.me
        self.host.others = [self.them, hero(30, 5, place=1)]
        self.host.set_tag(self.host.player, GameTag.NEXT_OPPONENT_PLAYER_ID, OPPONENT_ID)

        self.store = TurnRecordStore()
        self.store.get_or_create(1, TurnPhase.PLAYER_TURN)
        self.correlator = PhaseCorrelator(self.host, self.store, ["TB_BaconShopBob"])

    def play_turn_one(self):
        self.host.turn = 1
        self.correlator.on_turn_start(ActivePlayer.PLAYER)
        self.correlator.on_turn_start(ActivePlayer.OPPONENT)

    def start_turn_two(self, healths):
        self.host.turn = 2
        self.host.set_healths(healths)
        return self.correlator.on_turn_start(ActivePlayer.PLAYER)

    def test_first_turn_is_not_attributed(self):
        """Turn 1 has no previous turn; hero damage stays at its default."""
        self.play_turn_one()
        record = self.store.by_turn(1)
        self.assertEqual(record.hero_damage, 0)
        self.assertEqual(record.opponent_id, str(OPPONENT_ID))
        self.assertEqual(len(record.pre_combat_healths), 3)
        self.assertEqual(self.correlator.state, CombatState.SHOP_PHASE)

    def test_win_is_written_to_previous_turn(self):
        self.play_turn_one()
        self.start_turn_two({OPPONENT_ID: 20})
        self.assertEqual(self.store.by_turn(1).hero_damage, 10)
        self.assertEqual(self.store.by_turn(2).hero_damage, 0)

    def test_loss_is_negative(self):
        self.play_turn_one()
        self.start_turn_two({SELF_ID: 18})
        self.assertEqual(self.store.by_turn(1).hero_damage, -12)

    def test_tie_is_zero(self):
        self.play_turn_one()
        self.start_turn_two({})
        self.assertEqual(self.store.by_turn(1).hero_damage, 0)

    def test_missing_opponent_snapshot_keeps_previous_value(self):
        """When the opponent dropped off the leaderboard, a computed value is not overwritten."""
        self.play_turn_one()
        self.start_turn_two({OPPONENT_ID: 20})
        self.host.others = [hero(30, 5, place=1)]
        self.host.turn = 2
        self.correlator.on_turn_start(ActivePlayer.OPPONENT)
        self.assertEqual(self.store.by_turn(1).hero_damage, 10)

    def test_pre_combat_snapshot_is_captured_once(self):
        self.play_turn_one()
        self.host.set_healths({SELF_ID: 5})
        self.correlator.on_turn_start(ActivePlayer.OPPONENT)
        ours = [s for s in self.store.by_turn(1).pre_combat_healths if s.player_id == SELF_ID][0]
        self.assertEqual(ours.health, 30)

    def test_resource_counters_only_on_player_turn(self):
        player = self.host.player
        self.host.set_tag(player, GameTag.NUM_MINIONS_PLAYED_THIS_TURN, 2)
        self.host.set_tag(player, GameTag.PLAYER_TECH_LEVEL, 3)
        self.correlator.on_turn_start(ActivePlayer.PLAYER)
        self.host.set_tag(player, GameTag.NUM_MINIONS_PLAYED_THIS_TURN, 9)
        self.correlator.on_turn_start(ActivePlayer.OPPONENT)

        record = self.store.by_turn(1)
        self.assertEqual(record.minions_played_this_turn, 2)
        self.assertEqual(record.tavern_tier, 3)
        self.assertEqual(record.phase, TurnPhase.OPPONENT_TURN)

    def test_combat_is_inferred_from_board(self):
        """MAIN_COMBAT plus a real opponent hero and a minion in play means combat."""
        self.play_turn_one()
        self.host.opponent = self.them
        self.host.others.append(minion(40, "BG_CS2_065", 2, 3, 1))
        self.host.step = Step.MAIN_COMBAT
        self.assertEqual(self.correlator.poll_combat(), CombatState.COMBAT_PHASE)
        self.assertEqual(self.correlator.engaged_opponent_id, str(OPPONENT_ID))

        self.correlator.on_damage(self.them, 6)
        self.correlator.on_damage(self.me, 4)

        self.host.step = Step.MAIN_ACTION
        self.assertEqual(self.correlator.poll_combat(), CombatState.SHOP_PHASE)
        self.assertEqual(self.correlator.total_damage_dealt, 6)

    def test_combat_start_fills_missing_snapshot_and_opponent(self):
        """Without an opponent sub-phase or next-opponent tag, combat start supplies both."""
        self.host.set_tag(self.host.player, GameTag.NEXT_OPPONENT_PLAYER_ID, 0)
        self.host.turn = 1
        self.correlator.on_turn_start(ActivePlayer.PLAYER)
        record = self.store.by_turn(1)
        self.assertEqual(record.pre_combat_healths, [])
        self.assertIsNone(record.opponent_id)

        self.host.opponent = self.them
        self.host.others.append(minion(40, "BG_CS2_065", 2, 3, 1))
        self.host.step = Step.MAIN_COMBAT
        self.assertEqual(self.correlator.poll_combat(), CombatState.COMBAT_PHASE)
        self.assertEqual(record.opponent_id, str(OPPONENT_ID))
        self.assertEqual(len(record.pre_combat_healths), 3)

        self.host.step = Step.MAIN_ACTION
        self.correlator.poll_combat()
        self.start_turn_two({OPPONENT_ID: 20})
        self.assertEqual(record.hero_damage, 10)

    def test_shop_keeper_is_not_an_opponent(self):
        self.play_turn_one()
        self.host.opponent = hero(50, 0, card_id="TB_BaconShopBob")
        self.host.others.append(minion(40, "BG_CS2_065", 2, 3, 1))
        self.host.step = Step.MAIN_COMBAT
        self.assertFalse(self.correlator.is_combat_condition())
        self.assertEqual(self.correlator.poll_combat(), CombatState.SHOP_PHASE)

    def test_no_combat_before_first_shop_phase(self):
        self.host.opponent = self.them
        self.host.others.append(minion(40, "BG_CS2_065", 2, 3, 1))
        self.host.step = Step.MAIN_COMBAT
        self.assertEqual(self.correlator.poll_combat(), CombatState.NO_PHASE)


if __name__ == '__main__':
    unittest.main()
