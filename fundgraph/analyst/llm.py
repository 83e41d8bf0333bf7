"""
Completion service access.

Two entry points share one retry policy:

- complete(): raw text completion, used by the extraction merger which
  parses the JSON itself.
- extract_structured(): Instructor-validated response models, used by
  enrichment where the schema is owned by us.

Both return None when retries are exhausted or the call times out. Callers
treat None as "no result", never as a pipeline failure.
"""

import asyncio
import logging
import random
from typing import Optional, Type, TypeVar

import httpx
import instructor
from anthropic import AsyncAnthropic, APITimeoutError, APIError, RateLimitError
from instructor.core import InstructorRetryException
from pydantic import BaseModel

from ..config.settings import settings

logger = logging.getLogger(__name__)

MAX_RETRIES = settings.llm_max_retries

ModelT = TypeVar("ModelT", bound=BaseModel)

_anthropic_client: Optional[AsyncAnthropic] = None
_instructor_client = None


def get_anthropic_client() -> AsyncAnthropic:
    """Shared async Anthropic client with client-level timeouts."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=httpx.Timeout(settings.llm_timeout, connect=settings.llm_connect_timeout),
            max_retries=0,  # Retries handled below with jittered backoff
        )
    return _anthropic_client


def get_instructor_client():
    """Instructor wrapper around the shared Anthropic client."""
    global _instructor_client
    if _instructor_client is None:
        _instructor_client = instructor.from_anthropic(get_anthropic_client())
    return _instructor_client


async def _backoff(attempt: int, base: float) -> None:
    if attempt < MAX_RETRIES:
        await asyncio.sleep(base * random.uniform(0.9, 1.1))


async def complete(
    system_prompt: str,
    user_prompt: str,
    max_tokens: Optional[int] = None,
) -> Optional[str]:
    """Run one completion and return its text, or None on failure."""
    client = get_anthropic_client()
    last_error = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            message = await asyncio.wait_for(
                client.messages.create(
                    model=settings.llm_model,
                    max_tokens=max_tokens or settings.llm_max_tokens,
                    temperature=settings.llm_temperature,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                ),
                timeout=settings.llm_timeout,
            )
            if message.usage:
                logger.debug(
                    f"Claude call tokens: in={message.usage.input_tokens}, "
                    f"out={message.usage.output_tokens}"
                )
            texts = [block.text for block in message.content if getattr(block, "type", None) == "text"]
            return "".join(texts) if texts else None

        except (APITimeoutError, asyncio.TimeoutError) as e:
            last_error = e
            logger.warning(f"Claude API timeout (attempt {attempt + 1}/{MAX_RETRIES + 1})")
            await _backoff(attempt, 2 ** attempt)
            continue

        except RateLimitError as e:
            last_error = e
            logger.warning(f"Claude API rate limit (attempt {attempt + 1}/{MAX_RETRIES + 1}): {e}")
            await _backoff(attempt, 10 * (attempt + 1))
            continue

        except APIError as e:
            last_error = e
            status = getattr(e, "status_code", None)
            logger.error(f"Claude API error (attempt {attempt + 1}/{MAX_RETRIES + 1}): {e}")
            if status is not None and status >= 500 and attempt < MAX_RETRIES:
                await _backoff(attempt, 2 ** attempt)
                continue
            break  # Client errors (4xx) are not retried

    logger.error(f"Completion failed after {MAX_RETRIES + 1} attempts: {last_error}")
    return None


async def extract_structured(
    system_prompt: str,
    user_prompt: str,
    response_model: Type[ModelT],
    max_tokens: Optional[int] = None,
) -> Optional[ModelT]:
    """Run an Instructor extraction into `response_model`, or None on failure."""
    client = get_instructor_client()
    last_error = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            return await asyncio.wait_for(
                client.messages.create(
                    model=settings.llm_model,
                    max_tokens=max_tokens or settings.llm_enrichment_max_tokens,
                    temperature=settings.llm_temperature,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                    response_model=response_model,
                ),
                timeout=settings.llm_timeout,
            )

        except (APITimeoutError, asyncio.TimeoutError) as e:
            last_error = e
            logger.warning(f"Claude API timeout (attempt {attempt + 1}/{MAX_RETRIES + 1})")
            await _backoff(attempt, 2 ** attempt)
            continue

        except RateLimitError as e:
            last_error = e
            logger.warning(f"Claude API rate limit (attempt {attempt + 1}/{MAX_RETRIES + 1}): {e}")
            await _backoff(attempt, 10 * (attempt + 1))
            continue

        except InstructorRetryException as e:
            # Schema validation failed repeatedly; not transient
            logger.error(f"Instructor validation failed for {response_model.__name__}: {e}")
            return None

        except APIError as e:
            last_error = e
            status = getattr(e, "status_code", None)
            logger.error(f"Claude API error (attempt {attempt + 1}/{MAX_RETRIES + 1}): {e}")
            if status is not None and status >= 500 and attempt < MAX_RETRIES:
                await _backoff(attempt, 2 ** attempt)
                continue
            break

    logger.error(f"Structured extraction failed after {MAX_RETRIES + 1} attempts: {last_error}")
    return None
