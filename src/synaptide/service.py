"""Chat orchestration: one exchange from user turn to stored reply."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from .config import ChatConfig
from .errors import ValidationError
from .llm import FALLBACK_REPLY
from .storage.models import Message, Profile, Role, User, clean_name

if TYPE_CHECKING:
    from .llm import PreferenceAnalyzer, ResponseGenerator
    from .logging import JSONLLogger
    from .storage import Storage

logger = logging.getLogger(__name__)


class ChatService:
    """Runs exchanges against a storage handle and the LLM collaborators.

    Turns of one user are serialized with a per-user lock: the user turn
    is stored before the reply is generated, and the reply is stored
    before the next exchange of that user starts. Preference analysis
    runs in the background every `analyze_every` turns.
    """

    def __init__(
        self,
        storage: Storage,
        generator: ResponseGenerator,
        analyzer: PreferenceAnalyzer | None = None,
        config: ChatConfig | None = None,
        event_logger: JSONLLogger | None = None,
    ) -> None:
        self.storage = storage
        self.generator = generator
        self.analyzer = analyzer
        self.config = config or ChatConfig()
        self.event_logger = event_logger
        self._locks: dict[str, asyncio.Lock] = {}
        self._merge_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    def get_lock(self, user_id: str) -> asyncio.Lock:
        """Get the exchange lock for a user."""
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    def _get_merge_lock(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._merge_locks:
            self._merge_locks[user_id] = asyncio.Lock()
        return self._merge_locks[user_id]

    async def register(self, name: str) -> User:
        """Create or resume the user with this display name."""
        return await self.storage.users.create_or_get(clean_name(name))

    async def find_user(self, name: str) -> User | None:
        return await self.storage.users.resolve(clean_name(name))

    async def history(self, user_id: str) -> list[Message]:
        return await self.storage.messages.list_all(user_id)

    async def profile(self, user_id: str) -> Profile:
        """The user's profile, or the empty default if none exists yet."""
        profile = await self.storage.profiles.get(user_id)
        return profile or Profile.empty(user_id)

    async def clear(self, user_id: str) -> int:
        """Delete the user's conversation. The profile is kept."""
        async with self.get_lock(user_id):
            deleted = await self.storage.messages.clear(user_id)
        logger.info("Cleared %d messages for %s", deleted, user_id)
        if self.event_logger:
            self.event_logger.log_history_cleared(user_id, deleted)
        return deleted

    async def send_message(self, user_id: str, content: str) -> Message:
        """Store a user turn, generate and store the reply.

        Args:
            user_id: Owner of the conversation.
            content: Raw user text.

        Returns:
            The stored assistant turn.

        Raises:
            ValidationError: If content is blank.
            StorageError: If a storage call fails.
        """
        if not content or not content.strip():
            raise ValidationError("Message content is required")

        started = time.perf_counter()
        async with self.get_lock(user_id):
            await self.storage.messages.append(user_id, Role.USER, content)
            history = await self.storage.messages.list_all(user_id)
            turns = [message.for_llm() for message in history]

            try:
                reply = await self.generator.generate(turns)
            except Exception as e:
                logger.error("Reply generation failed for %s: %s", user_id, e)
                reply = FALLBACK_REPLY

            assistant = await self.storage.messages.append(user_id, Role.ASSISTANT, reply)

        if self.analyzer and len(history) % self.config.analyze_every == 0:
            self._schedule_analysis(user_id, [*turns, assistant.for_llm()])

        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug("Exchange for %s took %.1fms", user_id, duration_ms)
        if self.event_logger:
            self.event_logger.log_exchange(user_id, duration_ms, len(history) + 1)
        return assistant

    def _schedule_analysis(self, user_id: str, turns: list[dict[str, str]]) -> None:
        task = asyncio.create_task(self._analyze(user_id, turns))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _analyze(self, user_id: str, turns: list[dict[str, str]]) -> Profile | None:
        """Analyze turns and merge the result. Never raises."""
        if self.analyzer is None:
            return None
        try:
            patch = await self.analyzer.analyze(turns)
            if patch.is_empty():
                logger.debug("No preference signals for %s", user_id)
                return None
            async with self._get_merge_lock(user_id):
                profile = await self.storage.profiles.merge(user_id, patch)
        except Exception as e:
            logger.error("Preference update failed for %s: %s", user_id, e)
            if self.event_logger:
                self.event_logger.log_analysis_failed(user_id, str(e))
            return None

        logger.info("Merged profile for %s (version %d)", user_id, profile.version)
        if self.event_logger:
            self.event_logger.log_profile_merge(user_id, profile.version, len(profile.interests))
        return profile

    async def drain(self) -> None:
        """Wait for background analyses to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
