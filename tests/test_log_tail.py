import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.append(str(Path(__file__).parent.parent))

from bg_collector.core import log_grammar
from bg_collector.core.domain import CombatResult, LethalResult, TurnPhase, TurnRecordStore
from bg_collector.core.log_tail import LogTailParser

PREVIOUS_GAME = [
    "I 20:01:00.101|GameEventHandler.HandleGameStart >> --- Game start ---",
    "I 20:01:30.442|GameV2.OnTurnStart - Turn 1",
    "I 20:01:31.002|BattlegroundsBoardState.SnapshotCurrentBoard >> Snapshotting board state for Old Foe with player id 2",
    "I 20:01:32.117|BobsBuddyOutput >> WinRate=99.0% (Lethal=99.0%), TieRate=0.0%, LossRate=1.0% (Lethal=0.0%)",
]

CURRENT_GAME = [
    "I 20:30:00.001|GameEventHandler.HandleGameStart >> --- Game start ---",
    "I 20:30:41.310|GameV2.OnTurnStart - Turn 1",
    "I 20:30:42.880|BattlegroundsBoardState.SnapshotCurrentBoard >> Snapshotting board state for Sneed with player id 7",
    "I 20:30:43.001|BobsBuddyInvoker.RunAndDisplaySimulationAsync >> Running simulation",
    "I 20:30:43.552|BobsBuddyOutput >> WinRate=55.5% (Lethal=10.2%), TieRate=4.5%, LossRate=40.0% (Lethal=1.3%)",
    "I 20:30:44.020|BobsBuddyInvoker.StartCombat >> 8f2c1d7e-0b1a-4f6e-9b55-2a1c7e0d9f10",
    "I 20:31:05.774|BobsBuddyInvoker.ValidateSimulationResultAsync >> result=Win, lethalResult=NoOneDied",
    "I 20:31:20.000|GameV2.OnTurnStart - Turn 2",
    "I 20:31:21.500|BattlegroundsBoardState.SnapshotCurrentBoard >> Snapshotting board state for A. F. Kay with player id 5",
    "I 20:31:22.115|BobsBuddyOutput >> WinRate=20.0% (Lethal=0.0%), TieRate=10.0%, LossRate=70.0% (Lethal=5.0%)",
    "I 20:31:40.030|BobsBuddyInvoker.ValidateSimulationResultAsync >> result=Loss, lethalResult=FriendlyDied",
    "I 20:31:50.000|GameV2.OnTurnStart - Turn 3",
    "I 20:31:51.700|BattlegroundsBoardState.SnapshotCurrentBoard >> Snapshotting board state for Nobody with player id 8",
]


class TestLogGrammar(unittest.TestCase):
    def test_simulation_result_line(self):
        event = log_grammar.parse_line(CURRENT_GAME[4])
        self.assertIsInstance(event, log_grammar.SimulationResult)
        self.assertEqual(event.data.win_rate, 55.5)
        self.assertEqual(event.data.their_death_rate, 10.2)
        self.assertEqual(event.data.tie_rate, 4.5)
        self.assertEqual(event.data.loss_rate, 40.0)
        self.assertEqual(event.data.my_death_rate, 1.3)

    def test_opponent_name_with_spaces(self):
        event = log_grammar.parse_line(CURRENT_GAME[8])
        self.assertEqual(event, log_grammar.OpponentSnapshot("A. F. Kay", "5"))

    def test_combat_validation_line(self):
        event = log_grammar.parse_line(CURRENT_GAME[10])
        self.assertEqual(event.data.combat_result, CombatResult.LOSS)
        self.assertEqual(event.data.lethal_result, LethalResult.FRIENDLY_DIED)

    def test_unknown_combat_keyword_is_ignored(self):
        line = "BobsBuddyInvoker.ValidateSimulationResultAsync >> result=Draw, lethalResult=NoOneDied"
        self.assertIsNone(log_grammar.parse_line(line))

    def test_markers(self):
        self.assertTrue(log_grammar.is_game_start(CURRENT_GAME[0]))
        self.assertEqual(log_grammar.parse_line(CURRENT_GAME[1]), log_grammar.TurnStart(1))
        self.assertIsInstance(log_grammar.parse_line(CURRENT_GAME[3]), log_grammar.SimulationStarted)
        self.assertIsNone(log_grammar.parse_line("I 20:30:00.000|Something unrelated"))


class TestLogTailParser(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.log_path = os.path.join(self.tmp.name, "hdt_log.txt")
        self.sleep = MagicMock()
        self.parser = LogTailParser(self.log_path, sleep=self.sleep)

        self.store = TurnRecordStore()
        self.store.get_or_create(1, TurnPhase.PLAYER_TURN)
        self.store.get_or_create(2, TurnPhase.PLAYER_TURN)

    def tearDown(self):
        self.tmp.cleanup()

    def write_log(self, lines):
        with open(self.log_path, 'w', encoding='utf-8') as f:
            f.write("\n".join(lines) + "\n")

    def test_merges_current_game_only(self):
        """Lines before the last game-start marker belong to an older game."""
        self.write_log(PREVIOUS_GAME + CURRENT_GAME)
        summary = self.parser.parse(self.store, current_turn=1)

        turn1 = self.store.by_turn(1)
        self.assertEqual(turn1.opponent_id, "7")
        self.assertTrue(turn1.has_simulation_results)
        self.assertEqual(turn1.win_rate, 55.5)
        self.assertEqual(turn1.actual_combat_result, CombatResult.WIN)
        self.assertEqual(turn1.actual_lethal_result, LethalResult.NO_ONE_DIED)

        turn2 = self.store.by_turn(2)
        self.assertEqual(turn2.opponent_id, "5")
        self.assertEqual(turn2.loss_rate, 70.0)
        self.assertEqual(turn2.actual_combat_result, CombatResult.LOSS)

        self.assertEqual(summary.game_start_index, len(PREVIOUS_GAME))
        self.assertEqual(summary.simulations_per_turn[1], 1)
        self.assertEqual(summary.last_simulation_id, "8f2c1d7e-0b1a-4f6e-9b55-2a1c7e0d9f10")

    def test_parser_never_creates_turns(self):
        """Turn 3 has no record yet, so its opponent line is skipped."""
        self.write_log(CURRENT_GAME)
        summary = self.parser.parse(self.store, current_turn=1)
        self.assertIsNone(self.store.by_turn(3))
        self.assertEqual(len(self.store), 2)
        self.assertEqual(summary.skipped_missing_turn, 1)

    def test_reparse_is_idempotent(self):
        self.write_log(CURRENT_GAME)
        self.parser.parse(self.store, current_turn=2)
        first = [r.to_dict() for r in self.store]
        self.parser.parse(self.store, current_turn=2)
        self.assertEqual([r.to_dict() for r in self.store], first)

    def test_lines_before_turn_marker_use_current_turn(self):
        self.write_log([
            CURRENT_GAME[0],
            "I 20:35:00.000|BobsBuddyOutput >> WinRate=30.0% (Lethal=0.0%), TieRate=0.0%, LossRate=70.0% (Lethal=0.0%)",
        ])
        self.parser.parse(self.store, current_turn=2)
        self.assertEqual(self.store.by_turn(2).win_rate, 30.0)
        self.assertFalse(self.store.by_turn(1).has_simulation_results)

    def test_window_without_game_start_uses_most_recent_data(self):
        """With the marker scrolled out, every line left in the window still applies."""
        self.write_log(CURRENT_GAME[1:])
        summary = self.parser.parse(self.store, current_turn=1)
        self.assertEqual(summary.game_start_index, -1)
        self.assertEqual(self.store.by_turn(1).opponent_id, "7")
        self.assertEqual(self.store.by_turn(2).actual_combat_result, CombatResult.LOSS)

    def test_long_match_outgrows_window(self):
        self.store.get_or_create(12, TurnPhase.PLAYER_TURN)
        filler = [f"I 20:40:{i % 60:02d}.000|GameV2.HandleEntityChange >> tag change {i}" for i in range(400)]
        self.write_log([CURRENT_GAME[0]] + filler + [
            "I 21:10:00.000|GameV2.OnTurnStart - Turn 12",
            "I 21:10:02.000|BobsBuddyOutput >> WinRate=55.5% (Lethal=10.2%), TieRate=4.5%, LossRate=40.0% (Lethal=1.3%)",
        ])
        parser = LogTailParser(self.log_path, window_bytes=2000, sleep=self.sleep)
        summary = parser.parse(self.store, current_turn=12)

        self.assertEqual(summary.game_start_index, -1)
        self.assertEqual(summary.simulations_applied, 1)
        self.assertTrue(self.store.by_turn(12).has_simulation_results)
        self.assertEqual(self.store.by_turn(12).win_rate, 55.5)
        self.assertFalse(self.store.by_turn(1).has_simulation_results)

    def test_missing_file(self):
        self.assertIsNone(self.parser.parse(self.store, current_turn=1))
        self.sleep.assert_not_called()

    def test_read_retries_three_times(self):
        """A locked file is retried with a growing backoff, then given up on."""
        self.write_log(CURRENT_GAME)
        with patch.object(LogTailParser, '_read_window', side_effect=PermissionError("locked")) as read:
            self.assertIsNone(self.parser.parse(self.store, current_turn=1))
        self.assertEqual(read.call_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [0.1, 0.2])
        self.assertIsNone(self.store.by_turn(1).opponent_id)

    def test_recovers_on_second_attempt(self):
        self.write_log(CURRENT_GAME)
        text = "\n".join(CURRENT_GAME)
        with patch.object(LogTailParser, '_read_window', side_effect=[OSError("busy"), text]) as read:
            summary = self.parser.parse(self.store, current_turn=1)
        self.assertEqual(read.call_count, 2)
        self.assertEqual(self.store.by_turn(1).opponent_id, "7")
        self.assertGreater(summary.applied, 0)

    def test_window_drops_partial_first_line(self):
        with open(self.log_path, 'w', encoding='utf-8', newline='\n') as f:
            f.write("AAAA\nBBBB\nCCCC\n")
        parser = LogTailParser(self.log_path, window_bytes=7, sleep=self.sleep)
        self.assertEqual(parser.read_tail(), ["CCCC"])


if __name__ == '__main__':
    unittest.main()
