"""
Unit tests for QuizController session management.
"""
import asyncio
import unittest

from trivia_bot.config_manager import ConfigManager
from trivia_bot.data_manager import InMemoryStorage
from trivia_bot.leaderboard import LeaderboardStore
from trivia_bot.question_provider import ProviderError
from trivia_bot.quiz_controller import QuizController
from trivia_bot.quiz_engine import SessionState
from tests.test_fixtures import FakeClock, StaticProvider, FailingStorage

CHANNEL = 12345
PLAYER = 67890
OTHER_PLAYER = 11111
ANSWERS = ["4", "False", "Tungsten"]


class TestQuizControllerSessions(unittest.IsolatedAsyncioTestCase):
    """Test cases for starting, answering and stopping sessions."""

    async def asyncSetUp(self):
        """Set up test fixtures."""
        self.config_manager = ConfigManager()
        self.provider = StaticProvider()
        self.storage = InMemoryStorage()
        self.leaderboard = LeaderboardStore(self.storage)
        self.clock = FakeClock()
        self.controller = QuizController(
            self.config_manager,
            self.provider,
            self.leaderboard,
            use_timer=False,
            clock=self.clock
        )

    async def asyncTearDown(self):
        self.controller.stop_all()

    async def test_start_quiz_success(self):
        result = await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.assertTrue(result['success'])
        self.assertIn("3 questions", result['user_message'])
        session = result['session']
        self.assertIs(self.controller.get_session(CHANNEL), session)
        self.assertEqual(session.state, SessionState.AWAITING_ANSWER)
        self.assertTrue(self.controller.has_active_session(CHANNEL))

    async def test_start_uses_channel_options(self):
        """Test that the provider receives the channel's resolved query."""
        self.config_manager.set_amount(CHANNEL, 7)
        self.config_manager.set_difficulty(CHANNEL, "hard")

        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.assertEqual(self.provider.queries, [{"amount": 7, "difficulty": "hard"}])

    async def test_start_rejected_while_session_active(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        first = self.controller.get_session(CHANNEL)

        result = await self.controller.start_quiz(CHANNEL, OTHER_PLAYER, "Other")

        self.assertFalse(result['success'])
        self.assertIn("already running", result['user_message'])
        self.assertIs(self.controller.get_session(CHANNEL), first)
        self.assertEqual(len(self.provider.queries), 1)

    async def test_concurrent_starts_run_one_session(self):
        """Test that a second start while questions are loading is rejected."""
        self.provider.delay = 0.05

        first, second = await asyncio.gather(
            self.controller.start_quiz(CHANNEL, PLAYER, "Tester"),
            self.controller.start_quiz(CHANNEL, OTHER_PLAYER, "Other")
        )

        self.assertTrue(first['success'])
        self.assertFalse(second['success'])
        self.assertIn("already running", second['user_message'])
        self.assertEqual(len(self.provider.queries), 1)
        self.assertIs(self.controller.get_session(CHANNEL), first['session'])
        self.assertEqual(self.controller.get_game(CHANNEL).player_id, PLAYER)

    async def test_claim_released_after_failed_start(self):
        self.provider.error = ProviderError("HTTP 500", status=500)
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.provider.error = None
        result = await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.assertTrue(result['success'])

    async def test_channels_are_independent(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        result = await self.controller.start_quiz(CHANNEL + 1, OTHER_PLAYER, "Other")
        self.assertTrue(result['success'])
        self.assertIsNot(self.controller.get_session(CHANNEL), self.controller.get_session(CHANNEL + 1))

    async def test_provider_error_is_reported(self):
        self.provider.error = ProviderError("code 1", response_code=1)

        result = await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.assertFalse(result['success'])
        self.assertEqual(result['response_code'], 1)
        self.assertIn("Not enough questions", result['user_message'])
        self.assertIsNone(self.controller.get_session(CHANNEL))

    async def test_empty_question_list_is_not_started(self):
        self.provider.questions = []

        result = await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.assertFalse(result['success'])
        self.assertIsNone(self.controller.get_session(CHANNEL))
        self.assertFalse(self.controller.has_active_session(CHANNEL))

    async def test_submit_without_session(self):
        result = self.controller.submit_answer(CHANNEL, PLAYER, "4")
        self.assertFalse(result['success'])

    async def test_submit_from_other_player_is_rejected(self):
        """Test that only the player who started the quiz may answer."""
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        result = self.controller.submit_answer(CHANNEL, OTHER_PLAYER, "4")

        self.assertFalse(result['success'])
        self.assertIn("Tester", result['user_message'])
        self.assertEqual(self.controller.get_session(CHANNEL).state, SessionState.AWAITING_ANSWER)

    async def test_second_answer_is_ignored(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        first = self.controller.submit_answer(CHANNEL, PLAYER, "3")
        second = self.controller.submit_answer(CHANNEL, PLAYER, "4")

        self.assertTrue(first['success'])
        self.assertFalse(first['correct'])
        self.assertFalse(second['success'])
        self.assertEqual(self.controller.get_session(CHANNEL).correct_count, 0)

    async def test_answer_after_timeout_is_rejected(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        self.controller.get_session(CHANNEL).advance_time(10)

        result = self.controller.submit_answer(CHANNEL, PLAYER, "4")

        self.assertFalse(result['success'])
        self.assertTrue(self.controller.get_session(CHANNEL).time_expired)

    async def test_stop_quiz_records_nothing(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        self.controller.submit_answer(CHANNEL, PLAYER, "4")
        self.controller.advance(CHANNEL)

        result = self.controller.stop_quiz(CHANNEL)

        self.assertTrue(result['success'])
        self.assertIn("2/3", result['message'])
        self.assertIsNone(self.controller.get_session(CHANNEL))
        self.assertEqual(self.leaderboard.load(), [])

    async def test_stop_without_session(self):
        result = self.controller.stop_quiz(CHANNEL)
        self.assertFalse(result['success'])

    async def test_stop_all(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        await self.controller.start_quiz(CHANNEL + 1, OTHER_PLAYER, "Other")
        self.assertEqual(self.controller.stop_all(), 2)
        self.assertEqual(self.controller.games, {})


class TestQuizControllerScoring(unittest.IsolatedAsyncioTestCase):
    """Test cases for finishing sessions and recording results."""

    async def asyncSetUp(self):
        """Set up test fixtures."""
        self.storage = InMemoryStorage()
        self.leaderboard = LeaderboardStore(self.storage)
        self.clock = FakeClock()
        self.controller = QuizController(
            ConfigManager(),
            StaticProvider(),
            self.leaderboard,
            use_timer=False,
            clock=self.clock
        )

    async def finish_game(self, answers, seconds_per_question: float):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        for answer in answers:
            self.clock.advance(seconds_per_question)
            self.controller.submit_answer(CHANNEL, PLAYER, answer)
            self.controller.advance(CHANNEL)
        return self.controller.get_game(CHANNEL)

    async def test_fast_perfect_game_is_recorded(self):
        """Test a perfect game in 30 seconds scoring 1.0 + 1.3 + 1.7."""
        game = await self.finish_game(ANSWERS, 10)

        self.assertEqual(game.session.state, SessionState.FINISHED)
        self.assertAlmostEqual(game.session.result.final_weighted_score, 4.0)
        entries = self.leaderboard.load()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].name, "Tester")
        self.assertEqual(entries[0].correct_count, 3)
        self.assertAlmostEqual(entries[0].weighted_score, 4.0)
        self.assertEqual(game.leaderboard, entries)

    async def test_slow_game_is_scaled(self):
        """Test that 120 seconds in total halves the weighted score."""
        game = await self.finish_game(ANSWERS, 40)

        self.assertAlmostEqual(game.session.result.elapsed_seconds_total, 120)
        self.assertAlmostEqual(self.leaderboard.load()[0].weighted_score, 2.0)

    async def test_finished_game_recorded_once(self):
        game = await self.finish_game(ANSWERS, 1)

        self.assertFalse(self.controller.advance(CHANNEL))
        self.controller._on_session_finished(game, game.session.result)

        self.assertTrue(game.recorded)
        self.assertEqual(len(self.leaderboard.load()), 1)

    async def test_finished_channel_can_start_again(self):
        await self.finish_game(ANSWERS, 1)
        self.assertFalse(self.controller.has_active_session(CHANNEL))

        result = await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")

        self.assertTrue(result['success'])
        self.assertEqual(self.controller.get_session(CHANNEL).current_index, 0)

    async def test_storage_failure_still_ranks_result(self):
        controller = QuizController(
            ConfigManager(),
            StaticProvider(),
            LeaderboardStore(FailingStorage(fail_read=False, fail_write=True)),
            use_timer=False
        )
        await controller.start_quiz(CHANNEL, PLAYER, "Tester")
        for answer in ANSWERS:
            controller.submit_answer(CHANNEL, PLAYER, answer)
            controller.advance(CHANNEL)

        game = controller.get_game(CHANNEL)
        self.assertEqual(game.session.state, SessionState.FINISHED)
        self.assertEqual([e.name for e in game.leaderboard], ["Tester"])

    async def test_status_summary(self):
        self.assertIn("No quiz", self.controller.get_session_status_summary(CHANNEL))

        await self.controller.start_quiz(CHANNEL, PLAYER, "Tester")
        status = self.controller.get_session_status_summary(CHANNEL)
        self.assertIn("Question 1/3", status)
        self.assertIn("Time left: 10s", status)
        self.assertIn("Category: Any Category", status)
        self.assertIn("Difficulty: Any", status)

        for answer in ANSWERS:
            self.controller.submit_answer(CHANNEL, PLAYER, answer)
            self.controller.advance(CHANNEL)
        self.assertIn("Finished: 3/3", self.controller.get_session_status_summary(CHANNEL))

    async def test_get_leaderboard(self):
        await self.finish_game(["3", "True", "Titanium"], 1)
        top = self.controller.get_leaderboard()
        self.assertEqual(len(top), 1)
        self.assertEqual(top[0].correct_count, 0)
        self.assertEqual(top[0].weighted_score, 0.0)


if __name__ == '__main__':
    unittest.main()
