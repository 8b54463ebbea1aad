"""Application wiring - builds all components and manages lifecycle."""

from __future__ import annotations

from typing import Optional

from travel_chat.ai.client import AnthropicClient, ModelClient, OpenAIClient
from travel_chat.ai.dispatcher import ToolDispatcher
from travel_chat.ai.handler import ChatService
from travel_chat.ai.tool_runner import TurnRunner
from travel_chat.ai.tools.base import Tool
from travel_chat.ai.tools.registry import ToolRegistry
from travel_chat.config import AppConfig
from travel_chat.core.session import SessionManager
from travel_chat.core.types import Backend
from travel_chat.log import get_logger
from travel_chat.storage.database import Database
from travel_chat.storage.message_repo import MessageStore
from travel_chat.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class TravelChatApp:
    """Top-level application object."""

    def __init__(self, config: AppConfig, ai_client: Optional[ModelClient] = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.message_store = MessageStore(self.db)
        self.session_manager = SessionManager(SessionRepository(self.db))
        self.tool_registry = ToolRegistry()
        self._ai_client = ai_client
        self._chat_service: ChatService | None = None

    @property
    def chat_service(self) -> ChatService:
        if self._chat_service is None:
            raise RuntimeError("Application not started. Call start() first.")
        return self._chat_service

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Capability providers
        self.tool_registry.load_providers(self.config.tools.providers)
        tools = self._enabled_tools()

        # 3. Model backend
        if self._ai_client is None:
            self._ai_client = self._create_ai_client()

        # 4. Turn loop
        ai_config = self.config.ai
        runner = TurnRunner(
            client=self._ai_client,
            message_store=self.message_store,
            dispatcher=ToolDispatcher(self.tool_registry, timeout=ai_config.tool_timeout),
            tools=tools,
            ai_config=ai_config,
        )
        self._chat_service = ChatService(
            runner=runner,
            session_manager=self.session_manager,
            message_store=self.message_store,
            ai_client=self._ai_client,
            ai_config=ai_config,
        )
        logger.info(
            "travel_chat_started",
            backend=ai_config.backend.value,
            model=ai_config.model,
            tools=[t.name for t in tools],
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.db.close()
        logger.info("travel_chat_stopped")

    def _enabled_tools(self) -> list[Tool]:
        enabled = self.config.tools.enabled
        if not enabled:
            return self.tool_registry.all_tools()
        missing = [name for name in enabled if self.tool_registry.get(name) is None]
        if missing:
            logger.warning("tools_without_provider", tools=missing)
        return self.tool_registry.get_tools_by_names(enabled)

    def _create_ai_client(self) -> ModelClient:
        """Create a model client based on the backend configuration."""
        match self.config.ai.backend:
            case Backend.ANTHROPIC:
                if not self.config.anthropic:
                    raise ValueError("AI backend is 'anthropic' but no 'anthropic' section in config")
                return AnthropicClient(self.config.anthropic)
            case Backend.OPENAI:
                if not self.config.openai:
                    raise ValueError("AI backend is 'openai' but no 'openai' section in config")
                return OpenAIClient(self.config.openai)
            case _:
                raise ValueError(f"Unknown AI backend: {self.config.ai.backend}")
