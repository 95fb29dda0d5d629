"""
LLM completion capability: system prompt + user prompt in, JSON object out.

Wraps langchain's ChatOpenAI in JSON mode. The returned content still goes
through parse_llm_json: JSON mode can return an empty or truncated object.
"""

import logging
from typing import Any, Dict, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from leadgen.common.config import Config
from leadgen.common.json_utils import parse_llm_json

logger = logging.getLogger(__name__)


def create_chat_model(
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    **kwargs,
) -> ChatOpenAI:
    """Create a ChatOpenAI instance that answers with JSON objects."""
    return ChatOpenAI(
        model=model or Config.LLM_MODEL,
        temperature=Config.LLM_TEMPERATURE if temperature is None else temperature,
        api_key=Config.get_llm_api_key(),
        model_kwargs={"response_format": {"type": "json_object"}},
        **kwargs,
    )


class LLMClient:
    """
    JSON-mode completion client.

    Args:
        model: Model name (default: Config.LLM_MODEL)
        temperature: Sampling temperature (default: Config.LLM_TEMPERATURE)
        llm: Pre-built chat model (tests inject a mock here)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        llm: Optional[Any] = None,
    ):
        self.model = model or Config.LLM_MODEL
        self.temperature = Config.LLM_TEMPERATURE if temperature is None else temperature
        self._llm = llm

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = create_chat_model(self.model, self.temperature)
        return self._llm

    async def complete(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """
        Run one completion and return the parsed JSON object.

        Raises:
            ValidationError: Empty or malformed response
        """
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ]
        response = await self.llm.ainvoke(messages)
        content = response.content if hasattr(response, "content") else str(response)
        logger.debug(f"LLM response ({self.model}): {str(content)[:200]}")
        return parse_llm_json(content)
