"""
Planner interface for qaprobe.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
MCP connection) stays model-agnostic.

A planner receives the whole transcript plus the tool descriptors and returns one assistant
message in the chat-completions dict format::

    {"role": "assistant", "content": "...", "tool_calls": [{"id": ..., "type": "function",
     "function": {"name": ..., "arguments": "<json>"}}]}

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

from openai import (
    NOT_GIVEN,
    AsyncOpenAI,
)

from qaprobe.config import settings
from qaprobe.core.errors import MissingCredentialError
from qaprobe.core.schema import ToolDescriptor

logger = logging.getLogger(__name__)

Message = Dict[str, Any]


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str = "openai") -> "BasePlanner":
    """Factory that returns an instantiated planner."""
    cls = _PLANNER_REGISTRY.get(name.lower())
    if cls is None:
        raise ValueError(f"Planner '{name}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner that turns a transcript into the next assistant message."""

    @abstractmethod
    async def complete(
        self, messages: List[Message], tools: Sequence[ToolDescriptor]
    ) -> Message:
        """Return the assistant's next message, letting the model pick tools automatically."""


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI chat-completions planner with native tool calling."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        api_key = api_key or settings.OPENAI_API_KEY
        if not api_key:
            raise MissingCredentialError("OPENAI_API_KEY environment variable is not set")
        self.model = model or settings.OPENAI_MODEL
        self._client = AsyncOpenAI(api_key=api_key)

    async def complete(
        self, messages: List[Message], tools: Sequence[ToolDescriptor]
    ) -> Message:
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore[arg-type]
            tools=[tool.to_openai() for tool in tools] or NOT_GIVEN,  # type: ignore[arg-type]
            tool_choice="auto" if tools else NOT_GIVEN,
        )
        message = resp.choices[0].message
        logger.debug("OpenAI planner response: %s", message)

        result: Message = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            result["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.function.name,
                        "arguments": call.function.arguments,
                    },
                }
                for call in message.tool_calls
            ]
        return result
