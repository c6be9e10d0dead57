#!/usr/bin/env python3
"""
Trivia Bot - Main Entry Point

Runs the Discord trivia bot. The bot token comes from the DISCORD_BOT_TOKEN
environment variable or from the `bot.token` field of config.json.

Usage:
    python main.py [path/to/config.json]

Configuration sections:
    bot          token and command prefix
    quiz         default options and the answer reveal delay
    leaderboard  where the top 10 is stored
    provider     Open Trivia DB URL and request timeout
    logging      level and log directory
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from trivia_bot.config_manager import ConfigurationError

DEFAULT_CONFIG_PATH = "config.json"
TOKEN_ENV_VAR = "DISCORD_BOT_TOKEN"
TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
CONFIG_SECTIONS = ("bot", "quiz", "leaderboard", "provider", "logging")

logger = logging.getLogger("trivia_bot.main")


def load_config(config_path=DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Read config.json and check its sections.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a JSON object
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(
            f"{path} not found. Copy config.example.json to {path.name} and set your bot token."
        )

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"{path} must contain a JSON object, got {type(config).__name__}")

    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Replace config sections that are not JSON objects with empty ones.

    Values inside the quiz and provider sections are checked later by
    ConfigManager.apply_config, which falls back to defaults.

    Returns:
        Problems found, one message per replaced section
    """
    problems = []
    for section in CONFIG_SECTIONS:
        value = config.get(section)
        if value is None:
            config[section] = {}
        elif not isinstance(value, dict):
            problems.append(f"Section '{section}' must be an object, got {type(value).__name__}; using defaults")
            config[section] = {}

    unknown = sorted(set(config) - set(CONFIG_SECTIONS))
    if unknown:
        problems.append(f"Ignoring unknown config sections: {', '.join(unknown)}")

    for problem in problems:
        logger.warning(problem)
    return problems


def get_bot_token(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve the bot token; the environment variable wins over config.json.

    Raises:
        ConfigurationError: If neither source holds a real token
    """
    environ = os.environ if environ is None else environ
    token = environ.get(TOKEN_ENV_VAR, "").strip()
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not isinstance(token, str) or not token.strip() or token == TOKEN_PLACEHOLDER:
        raise ConfigurationError(
            f"Discord bot token not configured. Set {TOKEN_ENV_VAR} or the 'token' field in config.json."
        )
    return token.strip()


def setup_logging_from_config(config: Dict[str, Any]) -> None:
    """Log to the console and to bot.log in the configured directory."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8')
        ]
    )

    # discord.py and httpx log every request at INFO
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


async def run_bot_with_config(config_path=DEFAULT_CONFIG_PATH):
    config = load_config(config_path)
    setup_logging_from_config(config)
    token = get_bot_token(config)

    from trivia_bot.bot import run_bot
    await run_bot(token, config)


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else DEFAULT_CONFIG_PATH
    print("🤖 Starting Trivia Bot...")
    try:
        asyncio.run(run_bot_with_config(config_path))
    except ConfigurationError as e:
        print(f"❌ Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
