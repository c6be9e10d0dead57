"""
Quiz engine core logic for the Trivia Bot.
Handles question sequencing, the per-question countdown, and answer locking.
"""
import asyncio
import logging
import random
import time
from enum import Enum
from functools import partial
from typing import List, Optional, Callable, Any

from .models import Question, SessionSnapshot, SessionResult
from . import scoring

# Set up logger for timer operations
logger = logging.getLogger(__name__)

QUESTION_TIME_LIMIT = 10
TRUE_FALSE_LABELS = ["True", "False"]


class SessionState(Enum):
    """Enumeration of possible quiz session states."""
    IDLE = "idle"
    AWAITING_ANSWER = "awaiting_answer"
    LOCKED = "locked"
    FINISHED = "finished"
    ERROR = "error"


class InvalidTransition(Exception):
    """Raised internally when a transition is not allowed in the current state."""
    pass


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(session_id: str, token: int, interval: float) -> None:
        logger.debug(
            f"Timer lifecycle: COUNTDOWN_START - Session {session_id}, Question token {token}",
            extra={
                'event_type': 'timer_countdown_start',
                'session_id': session_id,
                'token': token,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_completion(session_id: str, completion_type: str, ticks: int) -> None:
        logger.debug(
            f"Timer lifecycle: COMPLETED - Session {session_id}, Type {completion_type}, Ticks {ticks}",
            extra={
                'event_type': 'timer_completion',
                'session_id': session_id,
                'completion_type': completion_type,
                'ticks': ticks,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(session_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Session {session_id}, {from_state} -> {to_state}"
            + (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'session_id': session_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_tick(session_id: str, details: str) -> None:
        logger.warning(
            f"Timer lifecycle: STALE_TICK_IGNORED - Session {session_id}: {details}",
            extra={
                'event_type': 'timer_stale_tick',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_id: str, error_type: str, error_message: str, operation: str) -> None:
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_id}, Operation {operation}, "
            f"Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_id': session_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Background task that calls a tick callback once per interval until cancelled."""

    def __init__(self, session_id: str = None, tick_interval: float = 1.0):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._session_id = session_id
        self._tick_interval = tick_interval
        self._ticks = 0

    def start(self, on_tick: Callable[[], Any], token: int = 0) -> asyncio.Task:
        """
        Schedule the countdown on the running event loop.

        Args:
            on_tick: Called once per interval; must not block
            token: Question token, used for logging only

        Returns:
            The asyncio task driving the countdown
        """
        if self._task is not None:
            raise RuntimeError("QuizTimer instances are single use")
        TimerLifecycleLogger.log_timer_start(self._session_id, token, self._tick_interval)
        self._task = asyncio.get_running_loop().create_task(self._run(on_tick))
        return self._task

    async def _run(self, on_tick: Callable[[], Any]) -> None:
        try:
            while not self._is_cancelled:
                await asyncio.sleep(self._tick_interval)
                if self._is_cancelled:
                    break
                self._ticks += 1
                on_tick()
            TimerLifecycleLogger.log_timer_completion(self._session_id, "cancelled", self._ticks)
        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_id, "asyncio_cancelled", self._ticks)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_id,
                "countdown_execution_error",
                str(e),
                "run"
            )
            raise

    def cancel(self) -> None:
        """Stop the countdown. Safe to call more than once."""
        if self._is_cancelled:
            return
        self._is_cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
            TimerLifecycleLogger.log_timer_state_transition(
                self._session_id,
                "running",
                "cancelled",
                "task cancelled"
            )

    @property
    def is_cancelled(self) -> bool:
        """Check if timer is cancelled."""
        return self._is_cancelled

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled


class QuizSession:
    """
    Drives one player through an ordered list of questions.

    Each question starts with a 10 second countdown in AWAITING_ANSWER. An
    answer or the countdown reaching zero locks the question; advance() moves
    to the next question or finishes the session. Transitions that are not
    valid in the current state are ignored and return False.

    Listeners registered with subscribe() receive a SessionSnapshot after every
    tick and transition; on_finish() listeners receive the SessionResult.
    """

    def __init__(
        self,
        questions: List[Question],
        session_id: str = None,
        timer_factory: Optional[Callable[[], QuizTimer]] = None,
        clock: Callable[[], float] = time.monotonic,
        time_limit: int = QUESTION_TIME_LIMIT
    ):
        """
        Args:
            questions: Ordered questions to play
            session_id: Identifier used in log messages
            timer_factory: Creates the background countdown for each question;
                without one, the countdown only moves through tick()/advance_time()
            clock: Monotonic clock used to measure total elapsed time
            time_limit: Seconds allowed per question
        """
        self.questions = list(questions)
        self.session_id = session_id
        self.time_limit = time_limit
        self._timer_factory = timer_factory
        self._clock = clock
        self._timer: Optional[QuizTimer] = None
        self._token = 0
        self._closed = False
        self._listeners: List[Callable[[SessionSnapshot], Any]] = []
        self._finish_listeners: List[Callable[[SessionResult], Any]] = []

        self.state = SessionState.IDLE
        self.current_index = 0
        self.countdown_remaining = time_limit
        self.answered = False
        self.time_expired = False
        self.last_answer_correct: Optional[bool] = None
        self.correct_count = 0
        self.weighted_score_running = 0.0
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0
        self.result: Optional[SessionResult] = None

    # Observation

    def subscribe(self, listener: Callable[[SessionSnapshot], Any]) -> Callable[[], None]:
        """Register a snapshot listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def on_finish(self, listener: Callable[[SessionResult], Any]) -> None:
        self._finish_listeners.append(listener)

    @property
    def current_question(self) -> Optional[Question]:
        if self.state in (SessionState.AWAITING_ANSWER, SessionState.LOCKED):
            return self.questions[self.current_index]
        return None

    @property
    def elapsed_seconds_total(self) -> float:
        if self.started_at is None:
            return 0.0
        if self.finished_at is not None:
            end = self.finished_at
        elif self._paused_at is not None:
            end = self._paused_at
        else:
            end = self._clock()
        return max(0.0, end - self.started_at - self._paused_total)

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state.value,
            current_index=self.current_index,
            total_questions=len(self.questions),
            countdown_remaining=self.countdown_remaining,
            answered=self.answered,
            time_expired=self.time_expired,
            correct_count=self.correct_count,
            weighted_score_running=self.weighted_score_running,
            elapsed_seconds_total=self.elapsed_seconds_total,
            last_answer_correct=self.last_answer_correct,
        )

    # Transitions

    def start(self) -> bool:
        """Enter the first question. An empty question list puts the session in ERROR."""
        try:
            self._require(SessionState.IDLE, "start")
        except InvalidTransition as e:
            logger.debug(str(e))
            return False

        if not self.questions:
            logger.error(f"Session {self.session_id} cannot start: no questions")
            self.state = SessionState.ERROR
            self._publish()
            return False

        self.started_at = self._clock()
        self._enter_question(0)
        logger.info(f"Session {self.session_id} started with {len(self.questions)} questions")
        return True

    def tick(self) -> bool:
        """Count down one second; at zero the question locks as incorrect."""
        try:
            self._require(SessionState.AWAITING_ANSWER, "tick")
        except InvalidTransition as e:
            logger.debug(str(e))
            return False

        self.countdown_remaining = max(0, self.countdown_remaining - 1)
        if self.countdown_remaining == 0:
            self.time_expired = True
            logger.info(f"Session {self.session_id}: time expired on question {self.current_index + 1}")
            self._lock(correct=False)
        else:
            self._publish()
        return True

    def advance_time(self, seconds: int) -> int:
        """
        Deliver `seconds` ticks synchronously.

        Returns:
            Number of ticks that had an effect
        """
        applied = 0
        for _ in range(max(0, int(seconds))):
            if not self.tick():
                break
            applied += 1
        return applied

    def submit_answer(self, option: str) -> bool:
        """
        Answer the current question.

        Returns:
            True if the answer was accepted, False if the question was already locked
        """
        try:
            self._require(SessionState.AWAITING_ANSWER, "submit_answer")
        except InvalidTransition as e:
            logger.debug(str(e))
            return False

        self.answered = True
        self._lock(correct=self.is_correct(self.questions[self.current_index], option))
        return True

    def advance(self) -> bool:
        """Move past a locked question to the next one, or finish the session."""
        try:
            self._require(SessionState.LOCKED, "advance")
        except InvalidTransition as e:
            logger.debug(str(e))
            return False

        if not self.is_last_question:
            self._enter_question(self.current_index + 1)
        else:
            self._finish()
        return True

    def pause_clock(self) -> None:
        """Stop counting elapsed time, e.g. while a locked answer is being revealed."""
        if self.started_at is None or self.finished_at is not None or self._paused_at is not None:
            return
        self._paused_at = self._clock()

    def resume_clock(self) -> None:
        if self._paused_at is None:
            return
        self._paused_total += max(0.0, self._clock() - self._paused_at)
        self._paused_at = None

    def teardown(self) -> None:
        """Cancel the countdown and ignore every later tick or transition."""
        self._cancel_timer()
        self._closed = True
        self._listeners.clear()
        self._finish_listeners.clear()
        logger.debug(f"Session {self.session_id} torn down in state {self.state.value}")

    @staticmethod
    def is_correct(question: Question, option: str) -> bool:
        if option is None:
            return False
        if question.is_boolean:
            return option.strip().lower() == question.correct_answer.strip().lower()
        return option == question.correct_answer

    # Internals

    def _require(self, state: SessionState, operation: str) -> None:
        if self._closed:
            raise InvalidTransition(f"Session {self.session_id}: {operation} ignored, session torn down")
        if self.state != state:
            raise InvalidTransition(
                f"Session {self.session_id}: {operation} ignored in state {self.state.value}"
            )

    def _enter_question(self, index: int) -> None:
        self._cancel_timer()
        self.current_index = index
        self.countdown_remaining = self.time_limit
        self.answered = False
        self.time_expired = False
        self.last_answer_correct = None
        self.state = SessionState.AWAITING_ANSWER
        self._token += 1
        self._arm_timer()
        self._publish()

    def _lock(self, correct: bool) -> None:
        self._cancel_timer()
        question = self.questions[self.current_index]
        self.correct_count, self.weighted_score_running = scoring.record_answer(
            self.correct_count,
            self.weighted_score_running,
            question.difficulty,
            correct
        )
        self.last_answer_correct = correct
        self.state = SessionState.LOCKED
        self._publish()

    def _finish(self) -> None:
        self._cancel_timer()
        self.resume_clock()
        self.finished_at = self._clock()
        elapsed = self.elapsed_seconds_total
        self.result = SessionResult(
            correct_count=self.correct_count,
            final_weighted_score=scoring.final_weighted_score(self.weighted_score_running, elapsed),
            total_questions=len(self.questions),
            elapsed_seconds_total=elapsed,
        )
        self.state = SessionState.FINISHED
        logger.info(
            f"Session {self.session_id} finished: {self.result.correct_count}/{self.result.total_questions} "
            f"correct, weighted {self.result.final_weighted_score:.2f} in {elapsed:.1f}s"
        )
        for listener in list(self._finish_listeners):
            try:
                listener(self.result)
            except Exception as e:
                logger.error(f"Finish listener failed for session {self.session_id}: {e}")
        self._publish()

    def _arm_timer(self) -> None:
        if self._timer_factory is None:
            return
        self._timer = self._timer_factory()
        self._timer.start(partial(self._on_timer_tick, self._token), token=self._token)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer_tick(self, token: int) -> None:
        if token != self._token or self._closed:
            TimerLifecycleLogger.log_stale_tick(
                self.session_id,
                f"tick for question token {token}, current token {self._token}"
            )
            return
        self.tick()

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener failed for session {self.session_id}: {e}")


class QuizEngine:
    """Builds quiz sessions and prepares questions for presentation."""

    def __init__(self, tick_interval: float = 1.0, rng: Optional[random.Random] = None):
        """
        Args:
            tick_interval: Seconds between countdown ticks for background timers
            rng: Random source used to shuffle answer options
        """
        self.tick_interval = tick_interval
        self._rng = rng or random.Random()

    def create_session(
        self,
        questions: List[Question],
        session_id: str = None,
        use_timer: bool = True,
        clock: Callable[[], float] = time.monotonic
    ) -> QuizSession:
        """
        Create a session for the given questions.

        Args:
            questions: Ordered questions to play
            session_id: Identifier used in log messages
            use_timer: Run the countdown as a background task (needs a running event loop)
            clock: Monotonic clock used to measure elapsed time
        """
        timer_factory = None
        if use_timer:
            timer_factory = partial(QuizTimer, session_id, self.tick_interval)
        return QuizSession(questions, session_id=session_id, timer_factory=timer_factory, clock=clock)

    def present_options(self, question: Question) -> List[str]:
        """
        Order a question's options for display.

        Multiple-choice options are shuffled; boolean questions always read
        True then False.
        """
        if question.is_boolean:
            return list(TRUE_FALSE_LABELS)
        shuffled = list(question.options)
        self._rng.shuffle(shuffled)
        return shuffled
