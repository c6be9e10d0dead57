"""
Configuration manager for Trivia Bot game options and runtime settings.

Game options are resolved into the query parameters understood by the
Open Trivia Database. Out-of-range options are clamped or ignored, never fatal.
"""
import logging
from dataclasses import replace
from typing import Optional, Dict, Any

from .models import GameOptions

logger = logging.getLogger(__name__)

MIN_AMOUNT = 3
MAX_AMOUNT = 30
ANY_CATEGORY = 0
DIFFICULTIES = ("easy", "medium", "hard", "any")
QUESTION_TYPES = ("boolean", "multiple", "any")

# Open Trivia Database category ids
CATEGORIES = {
    0: "Any Category",
    9: "General Knowledge",
    10: "Entertainment: Books",
    11: "Entertainment: Film",
    12: "Entertainment: Music",
    13: "Entertainment: Musicals & Theatres",
    14: "Entertainment: Television",
    15: "Entertainment: Video Games",
    16: "Entertainment: Board Games",
    17: "Science & Nature",
    18: "Science: Computers",
    19: "Science: Mathematics",
    20: "Mythology",
    21: "Sports",
    22: "Geography",
    23: "History",
    24: "Politics",
    25: "Art",
    26: "Celebrities",
    27: "Animals",
    28: "Vehicles",
    29: "Entertainment: Comics",
    30: "Science: Gadgets",
    31: "Entertainment: Japanese Anime & Manga",
    32: "Entertainment: Cartoon & Animations",
}


class ConfigurationError(ValueError):
    """Raised when a game option is out of range or of the wrong kind."""
    pass


def resolve_query(options: GameOptions) -> Dict[str, Any]:
    """
    Build the question provider query for a set of game options.

    `amount` is always present; `category`, `difficulty` and `type` are only
    included when they narrow the request.
    """
    query: Dict[str, Any] = {"amount": options.amount}
    if options.category != ANY_CATEGORY:
        query["category"] = options.category
    if options.difficulty != "any":
        query["difficulty"] = options.difficulty
    if options.type != "any":
        query["type"] = options.type
    return query


def type_from_flags(boolean: bool, multiple: bool) -> str:
    """Map the True/False and Multiple Choice toggles to a question type."""
    if boolean and not multiple:
        return "boolean"
    if multiple and not boolean:
        return "multiple"
    return "any"


def validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ConfigurationError(f"Amount must be an integer, got {type(amount).__name__}")
    if amount < MIN_AMOUNT or amount > MAX_AMOUNT:
        raise ConfigurationError(f"Amount must be between {MIN_AMOUNT} and {MAX_AMOUNT}, got {amount}")
    return amount


def validate_category(category) -> int:
    if isinstance(category, bool) or not isinstance(category, int):
        raise ConfigurationError(f"Category must be an integer id, got {type(category).__name__}")
    if category not in CATEGORIES:
        raise ConfigurationError(f"Unknown category id: {category}")
    return category


def validate_difficulty(difficulty) -> str:
    value = str(difficulty).strip().lower() if difficulty is not None else ""
    if value not in DIFFICULTIES:
        raise ConfigurationError(f"Unknown difficulty: {difficulty!r}")
    return value


def validate_type(question_type) -> str:
    value = str(question_type).strip().lower() if question_type is not None else ""
    if value not in QUESTION_TYPES:
        raise ConfigurationError(f"Unknown question type: {question_type!r}")
    return value


def clamp_amount(amount) -> int:
    """Clamp an amount into the allowed range, falling back to the minimum."""
    try:
        return validate_amount(amount)
    except ConfigurationError as e:
        logger.warning(f"{e}; clamping")
        if isinstance(amount, int) and not isinstance(amount, bool):
            return max(MIN_AMOUNT, min(MAX_AMOUNT, amount))
        return MIN_AMOUNT


def normalize_options(
    amount=MIN_AMOUNT,
    category=ANY_CATEGORY,
    difficulty="any",
    question_type="any"
) -> GameOptions:
    """
    Build a GameOptions snapshot from raw user input.

    Amounts are clamped into range; unknown categories, difficulties and types
    fall back to "any".
    """
    amount = clamp_amount(amount)

    try:
        category = validate_category(category)
    except ConfigurationError as e:
        logger.warning(f"{e}; using any category")
        category = ANY_CATEGORY

    try:
        difficulty = validate_difficulty(difficulty)
    except ConfigurationError as e:
        logger.warning(f"{e}; using any difficulty")
        difficulty = "any"

    try:
        question_type = validate_type(question_type)
    except ConfigurationError as e:
        logger.warning(f"{e}; using any type")
        question_type = "any"

    return GameOptions(amount=amount, category=category, difficulty=difficulty, type=question_type)


class ConfigManager:
    """Manages per-channel game options and bot runtime settings."""

    # Default configuration values
    DEFAULT_REVEAL_DELAY = 3
    DEFAULT_LEADERBOARD_FILE = "./data/leaderboard.json"
    DEFAULT_API_URL = "https://opentdb.com/api.php"
    DEFAULT_REQUEST_TIMEOUT = 10

    # Validation limits
    MIN_REVEAL_DELAY = 0
    MAX_REVEAL_DELAY = 30

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._default_options = GameOptions()
        self._channel_options: Dict[int, GameOptions] = {}
        self.reveal_delay = self.DEFAULT_REVEAL_DELAY
        self.leaderboard_file = self.DEFAULT_LEADERBOARD_FILE
        self.api_url = self.DEFAULT_API_URL
        self.request_timeout = self.DEFAULT_REQUEST_TIMEOUT

    def apply_config(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Apply the `quiz`, `leaderboard` and `provider` sections of config.json.

        Bad values are logged and replaced by defaults.
        """
        config = config or {}
        quiz_config = config.get('quiz', {})
        self._default_options = normalize_options(
            amount=quiz_config.get('default_amount', MIN_AMOUNT),
            category=quiz_config.get('default_category', ANY_CATEGORY),
            difficulty=quiz_config.get('default_difficulty', "any"),
            question_type=quiz_config.get('default_type', "any"),
        )

        reveal_delay = quiz_config.get('reveal_delay', self.DEFAULT_REVEAL_DELAY)
        if (isinstance(reveal_delay, (int, float)) and not isinstance(reveal_delay, bool)
                and self.MIN_REVEAL_DELAY <= reveal_delay <= self.MAX_REVEAL_DELAY):
            self.reveal_delay = reveal_delay
        else:
            self.logger.warning(f"Invalid reveal_delay {reveal_delay!r}, using {self.DEFAULT_REVEAL_DELAY}")
            self.reveal_delay = self.DEFAULT_REVEAL_DELAY

        self.leaderboard_file = config.get('leaderboard', {}).get('file', self.DEFAULT_LEADERBOARD_FILE)

        provider_config = config.get('provider', {})
        self.api_url = provider_config.get('api_url', self.DEFAULT_API_URL)
        timeout = provider_config.get('timeout', self.DEFAULT_REQUEST_TIMEOUT)
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            self.request_timeout = timeout
        else:
            self.logger.warning(f"Invalid provider timeout {timeout!r}, using {self.DEFAULT_REQUEST_TIMEOUT}")
            self.request_timeout = self.DEFAULT_REQUEST_TIMEOUT

        self.logger.info("Configuration applied successfully")

    def get_options(self, channel_id: int) -> GameOptions:
        """Get the options the next session in a channel will use."""
        return self._channel_options.get(channel_id, self._default_options)

    def get_query(self, channel_id: int) -> Dict[str, Any]:
        """Resolve the channel's options into a provider query."""
        return resolve_query(self.get_options(channel_id))

    def set_amount(self, channel_id: int, amount: int) -> Dict[str, Any]:
        """
        Set the number of questions for a channel.

        Out-of-range numbers are clamped into [3, 30]; non-numbers are ignored.

        Returns:
            Dictionary with success status, message, and user-friendly message
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            error_msg = f"Amount must be an integer, got {type(amount).__name__}"
            self.logger.warning(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(amount).__name__}"
            }

        value = clamp_amount(amount)
        self._update(channel_id, amount=value)
        if value != amount:
            return {
                'success': True,
                'value': value,
                'message': f"Amount {amount} clamped to {value}",
                'user_message': f"⚠️ Question count must be {MIN_AMOUNT}-{MAX_AMOUNT}, using {value}"
            }
        return {
            'success': True,
            'value': value,
            'message': f"Amount set to {value}",
            'user_message': f"✅ Question count set to {value}"
        }

    def set_category(self, channel_id: int, category: int) -> Dict[str, Any]:
        """Set the question category for a channel; 0 means any category."""
        try:
            value = validate_category(category)
        except ConfigurationError as e:
            self.logger.warning(str(e))
            return {
                'success': False,
                'error': str(e),
                'user_message': f"❌ Unknown category `{category}`. Use /help to list categories"
            }

        self._update(channel_id, category=value)
        return {
            'success': True,
            'value': value,
            'message': f"Category set to {value}",
            'user_message': f"✅ Category set to {CATEGORIES[value]}"
        }

    def set_difficulty(self, channel_id: int, difficulty: str) -> Dict[str, Any]:
        """Set the difficulty for a channel: easy, medium, hard or any."""
        try:
            value = validate_difficulty(difficulty)
        except ConfigurationError as e:
            self.logger.warning(str(e))
            return {
                'success': False,
                'error': str(e),
                'user_message': f"❌ Difficulty must be one of: {', '.join(DIFFICULTIES)}"
            }

        self._update(channel_id, difficulty=value)
        return {
            'success': True,
            'value': value,
            'message': f"Difficulty set to {value}",
            'user_message': f"✅ Difficulty set to {value}"
        }

    def set_type(self, channel_id: int, question_type: str) -> Dict[str, Any]:
        """Set the question type for a channel: boolean, multiple or any."""
        try:
            value = validate_type(question_type)
        except ConfigurationError as e:
            self.logger.warning(str(e))
            return {
                'success': False,
                'error': str(e),
                'user_message': f"❌ Question type must be one of: {', '.join(QUESTION_TYPES)}"
            }

        self._update(channel_id, type=value)
        return {
            'success': True,
            'value': value,
            'message': f"Question type set to {value}",
            'user_message': f"✅ Question type set to {value}"
        }

    def reset_options(self, channel_id: int) -> None:
        """Drop a channel's overrides so it uses the configured defaults again."""
        self._channel_options.pop(channel_id, None)
        self.logger.info(f"Options reset to defaults for channel {channel_id}")

    def get_options_summary(self, channel_id: int) -> str:
        """
        Get a formatted summary of a channel's options.

        Returns:
            Human-readable string describing current options
        """
        options = self.get_options(channel_id)
        type_str = {
            "boolean": "True/False",
            "multiple": "Multiple Choice",
            "any": "Any",
        }[options.type]
        return (
            f"• Questions: {options.amount}\n"
            f"• Category: {CATEGORIES.get(options.category, options.category)}\n"
            f"• Difficulty: {options.difficulty.capitalize()}\n"
            f"• Type: {type_str}"
        )

    def _update(self, channel_id: int, **changes) -> GameOptions:
        options = replace(self.get_options(channel_id), **changes)
        self._channel_options[channel_id] = options
        self.logger.info(f"Options for channel {channel_id}: {options}")
        return options
