"""
Quiz session controller for the Trivia Bot.
Manages active trivia sessions per Discord channel and records finished ones
on the leaderboard.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .config_manager import CATEGORIES, ConfigManager
from .leaderboard import LeaderboardStore
from .models import GameOptions, LeaderboardEntry, SessionResult
from .question_provider import OpenTriviaProvider, ProviderError
from .quiz_engine import QuizEngine, QuizSession, SessionState


@dataclass
class ActiveGame:
    """A running session and the player it belongs to."""
    channel_id: int
    player_id: int
    player_name: str
    options: GameOptions
    session: QuizSession
    leaderboard: Optional[List[LeaderboardEntry]] = None
    recorded: bool = False


class QuizController:
    """
    Orchestrates trivia sessions across Discord channels.

    Each channel can have at most one unfinished session. Starting a session
    resolves the channel's options into a provider query, fetches the
    questions and starts the countdown; when the session finishes its result
    is saved to the leaderboard exactly once.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        provider: OpenTriviaProvider,
        leaderboard: LeaderboardStore,
        engine: Optional[QuizEngine] = None,
        use_timer: bool = True,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the quiz controller.

        Args:
            config_manager: Source of per-channel game options
            provider: Question provider
            leaderboard: Store that ranks finished sessions
            engine: Session factory; a default QuizEngine if omitted
            use_timer: Run countdowns as background tasks
            clock: Monotonic clock handed to each session
        """
        self.logger = logging.getLogger(__name__)
        self.config_manager = config_manager
        self.provider = provider
        self.leaderboard = leaderboard
        self.engine = engine or QuizEngine()
        self.use_timer = use_timer
        self.clock = clock
        self.games: Dict[int, ActiveGame] = {}
        self._starting: Set[int] = set()

    def get_game(self, channel_id: int) -> Optional[ActiveGame]:
        return self.games.get(channel_id)

    def get_session(self, channel_id: int) -> Optional[QuizSession]:
        game = self.games.get(channel_id)
        return game.session if game else None

    def has_active_session(self, channel_id: int) -> bool:
        """Check if a channel has a session that has not finished yet."""
        session = self.get_session(channel_id)
        return session is not None and session.state in (
            SessionState.IDLE,
            SessionState.AWAITING_ANSWER,
            SessionState.LOCKED,
        )

    async def start_quiz(self, channel_id: int, player_id: int, player_name: str) -> Dict[str, Any]:
        """
        Fetch questions and start a session in a channel.

        Returns:
            Dictionary with success status, message, user-friendly message and,
            on success, the started session
        """
        if self.has_active_session(channel_id) or channel_id in self._starting:
            error_msg = f"Channel {channel_id} already has an active session"
            self.logger.warning(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ A quiz is already running in this channel. Use `/stop` to end it first."
            }

        # Claimed until the questions arrive; a concurrent start sees the claim
        self._starting.add(channel_id)
        try:
            return await self._start_claimed(channel_id, player_id, player_name)
        finally:
            self._starting.discard(channel_id)

    async def _start_claimed(self, channel_id: int, player_id: int, player_name: str) -> Dict[str, Any]:
        # A finished session from an earlier game is discarded on replay
        self._discard(channel_id)

        options = self.config_manager.get_options(channel_id)
        query = self.config_manager.get_query(channel_id)
        try:
            questions = await self.provider.fetch_questions(query)
        except ProviderError as e:
            self.logger.error(f"Question fetch failed for channel {channel_id}: {e}")
            return {
                'success': False,
                'error': str(e),
                'status': e.status,
                'response_code': e.response_code,
                'user_message': f"❌ Could not load questions: {e.user_message}"
            }

        session = self.engine.create_session(
            questions,
            session_id=str(channel_id),
            use_timer=self.use_timer,
            clock=self.clock
        )
        game = ActiveGame(
            channel_id=channel_id,
            player_id=player_id,
            player_name=player_name,
            options=options,
            session=session,
        )
        session.on_finish(lambda result: self._on_session_finished(game, result))
        self.games[channel_id] = game

        if not session.start():
            self._discard(channel_id)
            return {
                'success': False,
                'error': "No questions returned",
                'user_message': "❌ No questions are available for these options. Try `/options` with a broader choice."
            }

        self.logger.info(
            f"Started quiz in channel {channel_id} for {player_name} ({player_id}) "
            f"with {len(questions)} questions"
        )
        return {
            'success': True,
            'message': f"Quiz started with {len(questions)} questions",
            'user_message': f"🎯 Quiz started with {len(questions)} questions!",
            'session': session,
        }

    def submit_answer(self, channel_id: int, player_id: int, option: str) -> Dict[str, Any]:
        """
        Submit the player's answer for the current question.

        Only the player who started the session may answer. A second answer to
        the same question is ignored.
        """
        game = self.games.get(channel_id)
        if game is None:
            return {
                'success': False,
                'error': f"No session in channel {channel_id}",
                'user_message': "❌ There is no quiz running in this channel."
            }
        if game.player_id != player_id:
            return {
                'success': False,
                'error': f"User {player_id} is not the player of channel {channel_id}",
                'user_message': f"❌ This quiz belongs to {game.player_name}."
            }

        accepted = game.session.submit_answer(option)
        if not accepted:
            return {
                'success': False,
                'error': "Question already locked",
                'user_message': "⏳ This question is already closed."
            }
        correct = game.session.last_answer_correct
        return {
            'success': True,
            'correct': correct,
            'user_message': "✅ Correct!" if correct else "❌ Wrong answer."
        }

    def advance(self, channel_id: int) -> bool:
        """Move the channel's session past a locked question."""
        session = self.get_session(channel_id)
        if session is None:
            return False
        return session.advance()

    def stop_quiz(self, channel_id: int) -> Dict[str, Any]:
        """Tear down a channel's session without recording a result."""
        game = self.games.get(channel_id)
        if game is None or not self.has_active_session(channel_id):
            return {
                'success': False,
                'error': f"No active session in channel {channel_id}",
                'user_message': "❌ There is no quiz running in this channel."
            }

        session = game.session
        progress = f"{session.current_index + 1}/{len(session.questions)}"
        self._discard(channel_id)
        self.logger.info(f"Stopped quiz in channel {channel_id} at question {progress}")
        return {
            'success': True,
            'message': f"Quiz stopped at question {progress}",
            'user_message': f"🛑 Quiz stopped at question {progress}. No score was recorded."
        }

    def stop_all(self) -> int:
        """Tear down every session, e.g. on shutdown."""
        count = 0
        for channel_id in list(self.games):
            self._discard(channel_id)
            count += 1
        return count

    def get_leaderboard(self, count: int = 10) -> List[LeaderboardEntry]:
        return self.leaderboard.top(count)

    def get_session_status_summary(self, channel_id: int) -> str:
        """
        Get a human-readable status line for a channel.
        """
        game = self.games.get(channel_id)
        if game is None:
            return "No quiz in this channel. Use `/start` to begin."

        snapshot = game.session.snapshot()
        if snapshot.state == SessionState.FINISHED.value:
            result = game.session.result
            return (
                f"Finished: {result.correct_count}/{result.total_questions} correct, "
                f"score {result.final_weighted_score:.1f}"
            )
        return (
            f"Player: {game.player_name} | Question {snapshot.current_index + 1}/{snapshot.total_questions} | "
            f"Correct: {snapshot.correct_count} | Score: {snapshot.weighted_score_running:.1f} | "
            f"Time left: {snapshot.countdown_remaining}s\n"
            f"Category: {CATEGORIES.get(game.options.category, game.options.category)} | "
            f"Difficulty: {game.options.difficulty.capitalize()}"
        )

    def _on_session_finished(self, game: ActiveGame, result: SessionResult) -> None:
        if game.recorded:
            return
        game.recorded = True
        game.leaderboard = self.leaderboard.record(
            game.player_name,
            result.correct_count,
            result.final_weighted_score
        )

    def _discard(self, channel_id: int) -> None:
        game = self.games.pop(channel_id, None)
        if game is not None:
            game.session.teardown()
