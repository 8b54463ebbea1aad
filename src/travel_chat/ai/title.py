"""Session title generation."""

from __future__ import annotations

import re
from dataclasses import dataclass

from travel_chat.ai.client import ModelClient
from travel_chat.log import get_logger

logger = get_logger(__name__)

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that generates concise, descriptive titles for travel "
    "planning conversations. The title should be 2-5 words, focus on destinations or "
    "travel themes mentioned, and be capitalized appropriately."
)
DEFAULT_TITLE = "Travel Plans"
FALLBACK_TITLE = "Travel Planning"
DEFAULT_TAGLINE = "Explore your next destination"

_QUOTED = re.compile(r"""^["'](.*)["']$""", re.DOTALL)


@dataclass(frozen=True, slots=True)
class SessionTitle:
    title: str
    tagline: str = DEFAULT_TAGLINE


async def generate_session_title(
    client: ModelClient,
    conversation_summary: str,
    *,
    model: str,
) -> SessionTitle:
    """Ask the model for a short title. Never raises; falls back to a generic title."""
    prompt = (
        "Please generate a short, concise title (2-5 words) for this travel conversation. "
        f"Focus on the destination or main travel theme:\n\n{conversation_summary}"
    )
    try:
        reply = await client.complete_text(
            TITLE_SYSTEM_PROMPT, prompt, model=model, max_tokens=20, temperature=0.7
        )
    except Exception as e:
        logger.error("title_generation_failed", error=str(e))
        return SessionTitle(title=FALLBACK_TITLE)

    title = _QUOTED.sub(r"\1", reply.strip()).strip() or DEFAULT_TITLE
    return SessionTitle(title=title)
