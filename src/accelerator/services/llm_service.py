from __future__ import annotations

import logging
from typing import Any

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from accelerator.config import ModelConfig, get_model_config, settings
from accelerator.models.agent_schemas import Completion

logger = logging.getLogger(__name__)

# Transport hiccups only; a response with a failed status is never retried here.
_TRANSIENT = (APIConnectionError, APITimeoutError, RateLimitError)


def _create_openai_client(base_url: str = "") -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.llm_api_key,
        base_url=base_url or settings.llm_base_url,
    )


class LLMService:
    def __init__(self, config: ModelConfig | None = None) -> None:
        if config is None:
            config = get_model_config()
        self._config = config
        self.client = _create_openai_client(config.base_url)
        self.model = config.model or settings.llm_model
        self._temperature = config.temperature
        self._max_tokens = config.max_tokens

    @retry(
        retry=retry_if_exception_type(_TRANSIENT),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=2, max=30),
        reraise=True,
    )
    async def complete(
        self,
        conversation: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "required",
    ) -> Completion:
        """Request one turn from the Responses API with forced tool selection."""
        kwargs: dict = {
            "model": self.model,
            "input": conversation,
            "tools": tools,
            "tool_choice": tool_choice,
        }
        if self._temperature is not None:
            kwargs["temperature"] = self._temperature
        if self._max_tokens is not None:
            kwargs["max_output_tokens"] = self._max_tokens

        response = await self.client.responses.create(**kwargs)
        data = response.model_dump(exclude_none=True)
        logger.debug("Response %s status=%s items=%d", data.get("id"), data.get("status"), len(data.get("output", [])))
        return Completion(status=data.get("status") or "", output=data.get("output", []))
