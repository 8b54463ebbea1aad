"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """Base class for all model-callable tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model API."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters.

        Documentation for the model only; arguments are not validated against it.
        """
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Run the tool and return its result (text or any JSON-serializable value)."""
        ...

    def to_anthropic_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def to_openai_dict(self) -> dict[str, Any]:
        """Serialize to the OpenAI chat-completions function tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }
