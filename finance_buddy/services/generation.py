"""
Answer Generation - LLM Adapter

The RAG core stops at the prompt; an AnswerGenerator turns it into text.
"""

import os
from abc import ABC, abstractmethod
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from finance_buddy.errors import GenerationError
from finance_buddy.utils.logger import get_logger

logger = get_logger('services.generation')

SYSTEM_PROMPT = (
    "You are Finance Buddy, a personal finance assistant. Answer using the "
    "user's data in the prompt when it is relevant."
)


class AnswerGenerator(ABC):
    """Turns an assembled prompt into an answer"""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        pass


class OpenAIAnswerGenerator(AnswerGenerator):
    """OpenAI chat completion (gpt-4o-mini by default)"""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 600,
        timeout: float = 30,
        client: Optional[AsyncOpenAI] = None
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise GenerationError("OpenAI API key required (set OPENAI_API_KEY)")
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self.client = client

        logger.info(f"OpenAI answer generator initialized (model={model})")

    async def generate(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt}
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens
            )
        except OpenAIError as e:
            logger.error(f"Answer generation failed: {e}")
            raise GenerationError(f"Answer generation failed: {e}") from e

        choice = response.choices[0]
        logger.debug(f"Generated answer ({choice.finish_reason})")
        return choice.message.content or ""
