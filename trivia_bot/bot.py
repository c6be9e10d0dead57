import asyncio
import logging
import os
from functools import partial
from typing import Dict, List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config_manager import ConfigManager, CATEGORIES, type_from_flags
from .data_manager import JsonFileStorage
from .leaderboard import LeaderboardStore
from .models import LeaderboardEntry, Question, SessionSnapshot
from .question_provider import OpenTriviaProvider
from .quiz_controller import ActiveGame, QuizController
from .quiz_engine import QuizEngine, SessionState

logger = logging.getLogger(__name__)

DIFFICULTY_COLORS = {
    "easy": 0x00cc66,
    "medium": 0xffaa00,
    "hard": 0xff3333,
}
MEDALS = ["🥇", "🥈", "🥉"]
MAX_BUTTON_LABEL = 80


class AnswerView(discord.ui.View):
    """One button per answer option; clicks are forwarded to the quiz controller."""

    def __init__(self, controller: QuizController, channel_id: int, options: List[str]):
        super().__init__(timeout=None)
        self.controller = controller
        self.channel_id = channel_id
        for option in options:
            button = discord.ui.Button(
                label=option[:MAX_BUTTON_LABEL],
                style=discord.ButtonStyle.secondary
            )
            button.callback = partial(self.on_answer, option)
            self.add_item(button)

    async def on_answer(self, option: str, interaction: discord.Interaction):
        result = self.controller.submit_answer(self.channel_id, interaction.user.id, option)
        try:
            if result['success']:
                await interaction.response.defer()
            else:
                await interaction.response.send_message(result['user_message'], ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to acknowledge answer in channel {self.channel_id}: {e}")


class QuizBot(commands.Bot):
    """Discord bot for timed trivia sessions"""

    def __init__(self, config=None):
        # Set up intents - minimal intents for slash commands
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        # Store configuration
        self.app_config = config or {}

        # Initialize core components
        self.config_manager: Optional[ConfigManager] = None
        self.provider: Optional[OpenTriviaProvider] = None
        self.leaderboard: Optional[LeaderboardStore] = None
        self.quiz_controller: Optional[QuizController] = None
        self.quiz_engine = QuizEngine()
        self._presenters: Dict[int, asyncio.Task] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")
            self.setup_components()
            await self.setup_commands()
            logger.info("Bot setup completed successfully")
        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def setup_components(self):
        """Build the managers and controller from the loaded configuration."""
        self.config_manager = ConfigManager()
        self.config_manager.apply_config(self.app_config)
        self.provider = OpenTriviaProvider(
            api_url=self.config_manager.api_url,
            timeout=self.config_manager.request_timeout
        )
        self.leaderboard = LeaderboardStore(JsonFileStorage(self.config_manager.leaderboard_file))
        self.quiz_controller = QuizController(
            self.config_manager,
            self.provider,
            self.leaderboard,
            engine=self.quiz_engine
        )

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands and categories")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="options", description="Set the options for the next quiz in this channel")
        @app_commands.describe(
            amount="Number of questions (3-30)",
            category="Category id (0 = any, see /help)",
            difficulty="easy, medium, hard or any",
            question_type="boolean, multiple or any",
            true_false="Include True/False questions",
            multiple_choice="Include multiple choice questions",
            reset="Reset every option to the defaults first"
        )
        async def options_command(
            interaction: discord.Interaction,
            amount: Optional[int] = None,
            category: Optional[int] = None,
            difficulty: Optional[str] = None,
            question_type: Optional[str] = None,
            true_false: Optional[bool] = None,
            multiple_choice: Optional[bool] = None,
            reset: Optional[bool] = None
        ):
            await self.handle_options(
                interaction, amount, category, difficulty, question_type,
                true_false, multiple_choice, reset
            )

        @self.tree.command(name="start", description="Start a trivia quiz with the current options")
        async def start_command(interaction: discord.Interaction):
            await self.handle_start(interaction)

        @self.tree.command(name="stop", description="Stop the current quiz without recording a score")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="status", description="Show the current quiz progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="leaderboard", description="Show the top scores")
        async def leaderboard_command(interaction: discord.Interaction):
            await self.handle_leaderboard(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        """Stop every running quiz before disconnecting."""
        for task in self._presenters.values():
            task.cancel()
        self._presenters.clear()
        if self.quiz_controller:
            stopped = self.quiz_controller.stop_all()
            if stopped:
                logger.info(f"Stopped {stopped} quiz sessions on shutdown")
        if self.provider:
            await self.provider.close()
        await super().close()

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            embed = discord.Embed(
                title="🎯 Trivia Bot Commands",
                description="Answer each question within 10 seconds. Harder questions and faster games score more; time spent on answer reveals is not counted.",
                color=0x00ff00
            )
            embed.add_field(
                name="🎮 Commands",
                value=(
                    "`/options` - Set question count, category, difficulty, type, or reset\n"
                    "`/start` - Start a quiz with the current options\n"
                    "`/stop` - Stop the current quiz\n"
                    "`/status` - Show quiz progress\n"
                    "`/leaderboard` - Show the top scores"
                ),
                inline=False
            )
            embed.add_field(
                name="⚙️ Current Options",
                value=self.config_manager.get_options_summary(interaction.channel_id),
                inline=False
            )
            category_list = "\n".join(f"{cid}: {name}" for cid, name in CATEGORIES.items())
            embed.add_field(
                name="📚 Categories",
                value=f"```\n{category_list}\n```",
                inline=False
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help")

    async def handle_options(
        self,
        interaction: discord.Interaction,
        amount: Optional[int] = None,
        category: Optional[int] = None,
        difficulty: Optional[str] = None,
        question_type: Optional[str] = None,
        true_false: Optional[bool] = None,
        multiple_choice: Optional[bool] = None,
        reset: Optional[bool] = None
    ):
        """
        Handle /options command; every given option is applied independently.

        The True/False and multiple choice toggles are combined into a question
        type unless question_type is given explicitly.
        """
        channel_id = interaction.channel_id
        messages = []
        if reset:
            self.config_manager.reset_options(channel_id)
            messages.append("↩️ Options reset to defaults")
        if question_type is None and (true_false is not None or multiple_choice is not None):
            current = self.config_manager.get_options(channel_id).type
            if true_false is None:
                true_false = current in ("boolean", "any")
            if multiple_choice is None:
                multiple_choice = current in ("multiple", "any")
            question_type = type_from_flags(true_false, multiple_choice)
        if amount is not None:
            messages.append(self.config_manager.set_amount(channel_id, amount)['user_message'])
        if category is not None:
            messages.append(self.config_manager.set_category(channel_id, category)['user_message'])
        if difficulty is not None:
            messages.append(self.config_manager.set_difficulty(channel_id, difficulty)['user_message'])
        if question_type is not None:
            messages.append(self.config_manager.set_type(channel_id, question_type)['user_message'])

        embed = discord.Embed(
            title="⚙️ Quiz Options",
            description="\n".join(messages) if messages else "No changes.",
            color=0x6699ff
        )
        embed.add_field(
            name="Next quiz",
            value=self.config_manager.get_options_summary(channel_id),
            inline=False
        )
        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send options response: {e}")

    async def handle_start(self, interaction: discord.Interaction):
        """Handle /start command"""
        channel_id = interaction.channel_id
        try:
            await interaction.response.defer(thinking=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to defer start command: {e}")
            return

        result = await self.quiz_controller.start_quiz(
            channel_id,
            interaction.user.id,
            interaction.user.display_name
        )
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Quiz Start Failed")
            return

        game = self.quiz_controller.get_game(channel_id)
        embed = discord.Embed(
            title="🎯 Quiz Started!",
            description=f"**{game.player_name}** is playing {len(game.session.questions)} questions.",
            color=0x00ff00
        )
        embed.add_field(
            name="📊 Options",
            value=self.config_manager.get_options_summary(channel_id),
            inline=False
        )
        embed.set_footer(text="10 seconds per question. Use /stop to end the quiz.")
        try:
            await interaction.followup.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to announce quiz start: {e}")

        task = asyncio.create_task(self.present_session(interaction.channel, game))
        self._presenters[channel_id] = task
        task.add_done_callback(partial(self._forget_presenter, channel_id))

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        channel_id = interaction.channel_id
        result = self.quiz_controller.stop_quiz(channel_id)
        task = self._presenters.pop(channel_id, None)
        if task:
            task.cancel()

        try:
            if result['success']:
                embed = discord.Embed(
                    title="🛑 Quiz Stopped",
                    description=result['user_message'],
                    color=0xff6600
                )
                embed.set_footer(text="Use /start to begin a new quiz")
                await interaction.response.send_message(embed=embed)
            else:
                await self.send_info_response(interaction, result['user_message'], "ℹ️ No Active Quiz")
        except discord.HTTPException as e:
            logger.error(f"Error in stop command: {e}")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        summary = self.quiz_controller.get_session_status_summary(interaction.channel_id)
        await self.send_info_response(interaction, summary, "📊 Quiz Status")

    async def handle_leaderboard(self, interaction: discord.Interaction):
        """Handle /leaderboard command"""
        entries = self.quiz_controller.get_leaderboard()
        embed = discord.Embed(
            title="🏆 Leaderboard",
            description=self.format_leaderboard(entries),
            color=0xffd700
        )
        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send leaderboard: {e}")

    # Presentation

    async def present_session(self, channel: discord.abc.Messageable, game: ActiveGame):
        """
        Render a session in a channel until it finishes or is stopped.

        Snapshots from the session are queued and handled in order: countdown
        updates edit the question message, a locked question is revealed and
        advanced after the reveal delay, and a finished session posts the result.
        """
        session = game.session
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = session.subscribe(queue.put_nowait)
        shown_index = session.current_index
        message = await self.send_question(channel, game)
        try:
            while True:
                snapshot: SessionSnapshot = await queue.get()
                if snapshot.state == SessionState.AWAITING_ANSWER.value:
                    if snapshot.current_index != shown_index:
                        shown_index = snapshot.current_index
                        message = await self.send_question(channel, game)
                    elif queue.empty():
                        await self.edit_message(message, embed=self.question_embed(game, snapshot))
                elif snapshot.state == SessionState.LOCKED.value:
                    question = session.questions[snapshot.current_index]
                    # The reveal does not count towards the player's time
                    session.pause_clock()
                    await self.edit_message(message, embed=self.reveal_embed(question, snapshot), view=None)
                    await asyncio.sleep(self.config_manager.reveal_delay)
                    session.resume_clock()
                    session.advance()
                elif snapshot.state == SessionState.FINISHED.value:
                    await self.send_result(channel, game)
                    return
        finally:
            unsubscribe()

    async def send_question(self, channel: discord.abc.Messageable, game: ActiveGame) -> Optional[discord.Message]:
        question = game.session.current_question
        view = AnswerView(self.quiz_controller, game.channel_id, self.quiz_engine.present_options(question))
        try:
            return await channel.send(embed=self.question_embed(game, game.session.snapshot()), view=view)
        except discord.HTTPException as e:
            logger.error(f"Failed to send question in channel {game.channel_id}: {e}")
            return None

    async def send_result(self, channel: discord.abc.Messageable, game: ActiveGame):
        result = game.session.result
        embed = discord.Embed(
            title="🎉 Quiz Finished!",
            description=(
                f"**{game.player_name}** answered {result.correct_count}/{result.total_questions} correctly\n"
                f"Score: **{result.final_weighted_score:.1f}** in {int(result.elapsed_seconds_total)}s"
            ),
            color=0x00ff00
        )
        embed.add_field(
            name="🏆 Top 3",
            value=self.format_leaderboard((game.leaderboard or [])[:3]),
            inline=False
        )
        embed.set_footer(text="Use /start to play again")
        try:
            await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send result in channel {game.channel_id}: {e}")

    @staticmethod
    async def edit_message(message: Optional[discord.Message], **kwargs):
        if message is None:
            return
        try:
            await message.edit(**kwargs)
        except discord.HTTPException as e:
            logger.error(f"Failed to update quiz message: {e}")

    @staticmethod
    def question_embed(game: ActiveGame, snapshot: SessionSnapshot) -> discord.Embed:
        question = game.session.questions[snapshot.current_index]
        remaining = snapshot.countdown_remaining
        embed = discord.Embed(
            title=f"Question {snapshot.current_index + 1}/{snapshot.total_questions}",
            description=question.text,
            color=DIFFICULTY_COLORS.get(question.difficulty, 0x6699ff)
        )
        embed.add_field(name="📚 Category", value=question.category or "Any", inline=True)
        embed.add_field(name="🎚️ Difficulty", value=question.difficulty.capitalize() or "-", inline=True)
        timer_emoji = "⏱️" if remaining > 3 else "🚨"
        embed.add_field(
            name=f"{timer_emoji} Time Remaining",
            value=f"{remaining} second{'s' if remaining != 1 else ''}",
            inline=True
        )
        embed.set_footer(text=f"Score: {snapshot.weighted_score_running:.1f} | Correct: {snapshot.correct_count}")
        return embed

    @staticmethod
    def reveal_embed(question: Question, snapshot: SessionSnapshot) -> discord.Embed:
        if snapshot.time_expired:
            title, color = "⏰ Time's Up!", 0xff0000
        elif snapshot.last_answer_correct:
            title, color = "✅ Correct!", 0x00ff00
        else:
            title, color = "❌ Wrong!", 0xff0000
        embed = discord.Embed(
            title=f"{title} - Question {snapshot.current_index + 1}/{snapshot.total_questions}",
            description=question.text,
            color=color
        )
        embed.add_field(name="Correct Answer", value=f"**{question.correct_answer}**", inline=False)
        embed.set_footer(text=f"Score: {snapshot.weighted_score_running:.1f} | Correct: {snapshot.correct_count}")
        return embed

    @staticmethod
    def format_leaderboard(entries: List[LeaderboardEntry]) -> str:
        if not entries:
            return "No records yet."
        lines = []
        for i, entry in enumerate(entries):
            rank = MEDALS[i] if i < len(MEDALS) else f"{i + 1}."
            lines.append(
                f"{rank} **{entry.name}** - Correct: {entry.correct_count} • "
                f"Score: {entry.weighted_score:.1f} • {entry.timestamp:%Y-%m-%d %H:%M}"
            )
        return "\n".join(lines)

    def _forget_presenter(self, channel_id: int, task: asyncio.Task):
        if self._presenters.get(channel_id) is task:
            del self._presenters[channel_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Quiz presentation failed in channel {channel_id}: {task.exception()}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0xff0000
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0x6699ff
            )

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send info response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Trivia Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
