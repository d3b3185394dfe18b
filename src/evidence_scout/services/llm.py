"""Generic LLM call helpers."""

import logging
from functools import lru_cache

from anthropic import NOT_GIVEN, AsyncAnthropic
from dotenv import load_dotenv

from evidence_scout.config import get_settings

load_dotenv()

logger = logging.getLogger(__name__)


@lru_cache
def get_client() -> AsyncAnthropic:
    """Process-wide provider client.

    SDK retries are disabled: 429s must reach the executor so it can pace.
    """
    settings = get_settings()
    return AsyncAnthropic(
        api_key=settings.anthropic_api_key or None,
        base_url=settings.anthropic_base_url,
        timeout=settings.llm_timeout,
        max_retries=0,
    )


async def query_llm(
    prompt: str,
    system: str = "",
    *,
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> str:
    settings = get_settings()
    response = await get_client().messages.create(
        model=settings.llm_model,
        max_tokens=max_tokens or settings.llm_max_tokens,
        temperature=settings.llm_temperature if temperature is None else temperature,
        system=system or NOT_GIVEN,
        messages=[{"role": "user", "content": prompt}],
    )
    text = "".join(
        block.text for block in response.content if getattr(block, "type", "") == "text"
    )
    logger.debug(
        "LLM response model=%s chars=%d stop=%s",
        settings.llm_model,
        len(text),
        response.stop_reason,
    )
    return text
