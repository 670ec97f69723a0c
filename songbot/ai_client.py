from __future__ import annotations
import logging
from typing import Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = 'You are a helpful assistant.'


class AIClient:
    """Thin async wrapper around OpenAI chat completions.

    Errors from the API propagate to the caller; the content gate decides how a
    failed classification is treated.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = 'gpt-4o-mini',
        max_tokens: int = 150,
        temperature: float = 0.7,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def generate_response(self, prompt: str, system_prompt: str = DEFAULT_SYSTEM_PROMPT) -> str:
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        content = completion.choices[0].message.content if completion.choices else None
        logger.debug('AI response: %r', content)
        return content or ''

    async def close(self) -> None:
        await self._client.close()
