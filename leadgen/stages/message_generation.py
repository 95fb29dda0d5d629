"""
Approach message generation.

Up to 3 LLM attempts with growing waits (2s, then 4s). If every attempt
fails, the static template is used and the failure is reported as a soft
error: message generation never makes materialization fail.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing
from tenacity.wait import wait_base

from leadgen.common.config import Config
from leadgen.common.json_utils import validate_payload
from leadgen.common.llm_client import LLMClient
from leadgen.common.models import WorkItem
from leadgen.stages.prompts import (
    APPROACH_MESSAGE_SYSTEM_PROMPT,
    APPROACH_MESSAGE_USER_TEMPLATE,
    DEFAULT_APPROACH_MESSAGE,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MAX_MESSAGE_LENGTH = 300
DEFAULT_FIRST_NAME = "Cher(e) professionnel(le)"
DEFAULT_POSITION = "profils qualifiés"


class ApproachMessage(BaseModel):
    message_approche: str = Field(..., min_length=1)

    @field_validator("message_approche")
    @classmethod
    def strip(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("empty message")
        return v


@dataclass
class MessageResult:
    message: str
    used_fallback: bool
    attempts: int
    error: Optional[str] = None


def first_name_of(author_name: Optional[str]) -> str:
    if author_name and author_name.strip():
        return author_name.strip().split()[0]
    return DEFAULT_FIRST_NAME


def build_fallback_message(author_name: Optional[str], positions: List[str]) -> str:
    position = positions[0] if positions else DEFAULT_POSITION
    return DEFAULT_APPROACH_MESSAGE.format(first_name=first_name_of(author_name), position=position)


class MessageGenerator:
    """
    Args:
        llm: Completion client (default: LLMClient at MESSAGE_TEMPERATURE)
        wait: tenacity wait strategy between attempts
    """

    def __init__(self, llm: Optional[LLMClient] = None, wait: Optional[wait_base] = None):
        self.llm = llm or LLMClient(temperature=Config.MESSAGE_TEMPERATURE)
        self.wait = wait or wait_incrementing(start=2, increment=2)

    async def _generate_once(self, item: WorkItem, positions: List[str]) -> str:
        user_prompt = APPROACH_MESSAGE_USER_TEMPLATE.format(
            first_name=first_name_of(item.author_name),
            positions=", ".join(positions) or DEFAULT_POSITION,
            text=item.text,
        )
        payload = await self.llm.complete(APPROACH_MESSAGE_SYSTEM_PROMPT, user_prompt)
        message = validate_payload(payload, ApproachMessage, source="approach message").message_approche
        if len(message) > MAX_MESSAGE_LENGTH:
            logger.info(f"Approach message for {item.id} is {len(message)} chars (> {MAX_MESSAGE_LENGTH})")
        return message

    async def generate(self, item: WorkItem) -> MessageResult:
        """Never raises: falls back to the static template."""
        positions = item.stage3_positions or []
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=self.wait,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    message = await self._generate_once(item, positions)
            return MessageResult(message=message, used_fallback=False, attempts=attempts)
        except Exception as e:
            error = f"OpenAI generation failed after {attempts} attempts. Last error: {e}"
            logger.warning(f"Item {item.id}: {error}; using default template")
            return MessageResult(
                message=build_fallback_message(item.author_name, positions),
                used_fallback=True,
                attempts=attempts,
                error=error,
            )
