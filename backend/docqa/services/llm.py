import asyncio
import logging
from typing import AsyncIterator, Optional

from anthropic import AsyncAnthropic

from docqa.config import settings
from docqa.exceptions import GenerationFailure
from docqa.services.retry import Sleep, fixed_retrying


logger = logging.getLogger(__name__)


class LLMService:
    SYSTEM_PROMPT = """You are a helpful assistant that answers questions about documents the user has uploaded.

IMPORTANT RULES:
1. Prefer the provided document context when it is relevant to the question
2. If no context is provided, answer from general knowledge and say that the answer is not based on the uploaded documents
3. Be concise and do not invent quotes from the documents"""

    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        model: str = None,
        max_tokens: int = None,
        max_attempts: int = None,
        retry_delay: float = None,
        sleep: Sleep = asyncio.sleep
    ):
        self._client = client
        self.model = model or settings.llm_model
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.max_attempts = max_attempts or settings.retry_attempts
        self.retry_delay = settings.retry_delay if retry_delay is None else retry_delay
        self._sleep = sleep

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=settings.anthropic_api_key)
        return self._client

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        async with self.client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            system=self.SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}]
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text

    async def generate(self, prompt: str) -> str:
        async def attempt() -> str:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=self.SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}]
            )
            return "".join(block.text for block in response.content if block.type == "text")

        retrying = fixed_retrying(self.max_attempts, self.retry_delay, self._sleep)
        try:
            return await retrying(attempt)
        except Exception as e:
            raise GenerationFailure(f"Generation failed: {e}", cause=e) from e


llm_service = LLMService()
