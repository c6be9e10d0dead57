"""
Integration tests for Trivia Bot.
Runs complete quiz sessions through the controller with the real question
client (over a mock HTTP transport), background timers and a JSON leaderboard file.
"""
import asyncio
import json
import shutil
import tempfile
import unittest
from pathlib import Path

import httpx

from trivia_bot.config_manager import ConfigManager
from trivia_bot.data_manager import JsonFileStorage
from trivia_bot.leaderboard import LeaderboardStore
from trivia_bot.question_provider import OpenTriviaProvider
from trivia_bot.quiz_controller import QuizController
from trivia_bot.quiz_engine import QuizEngine, SessionState
from tests.test_fixtures import TestFixtures

TICK = 0.01
CHANNEL = 4242
PLAYER = 7


class TestCompleteQuizFlow(unittest.IsolatedAsyncioTestCase):
    """Test complete quiz flows from options to leaderboard."""

    async def asyncSetUp(self):
        """Set up integration test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.leaderboard_path = Path(self.temp_dir) / "data" / "leaderboard.json"
        self.requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(dict(request.url.params))
            return httpx.Response(200, json=TestFixtures.create_api_payload())

        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.config_manager = ConfigManager()
        self.config_manager.apply_config({
            'quiz': {'default_amount': 2, 'default_difficulty': "medium"},
            'leaderboard': {'file': str(self.leaderboard_path)},
        })
        self.controller = QuizController(
            self.config_manager,
            OpenTriviaProvider(client=self.http_client),
            LeaderboardStore(JsonFileStorage(self.config_manager.leaderboard_file)),
            engine=QuizEngine(tick_interval=TICK)
        )

    async def asyncTearDown(self):
        """Clean up test environment."""
        self.controller.stop_all()
        await self.http_client.aclose()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def wait_for_state(self, state: SessionState, timeout: float = 2.0):
        session = self.controller.get_session(CHANNEL)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while session.state != state:
            if loop.time() > deadline:
                self.fail(f"Session never reached {state}")
            await asyncio.sleep(TICK)

    def read_leaderboard_file(self):
        with open(self.leaderboard_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    async def test_answered_quiz_is_persisted(self):
        """Test a full quiz answered correctly ends up in the leaderboard file."""
        result = await self.controller.start_quiz(CHANNEL, PLAYER, "Grace")
        self.assertTrue(result['success'])
        self.assertEqual(self.requests, [{"amount": "3", "difficulty": "medium"}])

        session = result['session']
        self.assertEqual(session.current_question.text, 'Who directed "Jaws"?')
        self.assertTrue(self.controller.submit_answer(CHANNEL, PLAYER, "Steven Spielberg")['correct'])
        self.assertTrue(self.controller.advance(CHANNEL))
        self.assertTrue(self.controller.submit_answer(CHANNEL, PLAYER, "true")['correct'])
        self.assertTrue(self.controller.advance(CHANNEL))

        self.assertEqual(session.state, SessionState.FINISHED)
        self.assertAlmostEqual(session.result.final_weighted_score, 2.3)
        records = self.read_leaderboard_file()['leaderboard']
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]['name'], "Grace")
        self.assertEqual(records[0]['score'], 2)
        self.assertAlmostEqual(records[0]['trueScore'], 2.3)

    async def test_unanswered_questions_time_out(self):
        """Test that background countdowns lock questions nobody answers."""
        await self.controller.start_quiz(CHANNEL, PLAYER, "Grace")

        for _ in range(2):
            await self.wait_for_state(SessionState.LOCKED)
            session = self.controller.get_session(CHANNEL)
            self.assertTrue(session.time_expired)
            self.controller.advance(CHANNEL)

        session = self.controller.get_session(CHANNEL)
        self.assertEqual(session.state, SessionState.FINISHED)
        self.assertEqual(session.result.correct_count, 0)
        self.assertEqual(self.read_leaderboard_file()['leaderboard'][0]['trueScore'], 0.0)

    async def test_stopped_quiz_leaves_no_record(self):
        await self.controller.start_quiz(CHANNEL, PLAYER, "Grace")
        self.controller.submit_answer(CHANNEL, PLAYER, "Steven Spielberg")
        session = self.controller.get_session(CHANNEL)

        self.assertTrue(self.controller.stop_quiz(CHANNEL)['success'])
        await asyncio.sleep(TICK * 3)

        self.assertEqual(session.state, SessionState.LOCKED)
        self.assertFalse(self.leaderboard_path.exists())

    async def test_leaderboard_survives_restart(self):
        """Test that a new store over the same file sees earlier results."""
        await self.controller.start_quiz(CHANNEL, PLAYER, "Grace")
        for answer in ("Steven Spielberg", "False"):
            self.controller.submit_answer(CHANNEL, PLAYER, answer)
            self.controller.advance(CHANNEL)

        reopened = LeaderboardStore(JsonFileStorage(str(self.leaderboard_path)))
        entries = reopened.top(3)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].correct_count, 1)
        self.assertAlmostEqual(entries[0].weighted_score, 1.3)


if __name__ == '__main__':
    unittest.main()
