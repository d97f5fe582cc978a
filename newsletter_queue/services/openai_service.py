"""OpenAI content provider for section text and image generation."""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)

from newsletter_queue.infrastructure.api_clients.rate_limiter import (
    RetryPolicy,
    SleepFunc,
    SlidingWindowRateLimiter,
)
from newsletter_queue.infrastructure.config import ApplicationConfig
from newsletter_queue.infrastructure.error_handling import (
    ConfigurationError,
    ContentProviderError,
    TransientProviderError,
)
from newsletter_queue.infrastructure.logging import LoggerMixin

TRANSIENT_OPENAI_ERRORS = (
    RateLimitError,
    APITimeoutError,
    APIConnectionError,
    InternalServerError,
)


class ContentProvider(ABC):
    """Generative model used by the job processor."""

    @abstractmethod
    async def generate_text(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        """Return generated text for a system/user message pair."""

    @abstractmethod
    async def generate_image(self, prompt: str) -> str:
        """Return the URL of an image generated for the prompt."""


class OpenAIContentProvider(ContentProvider, LoggerMixin):
    """Service for OpenAI chat completion and image calls."""

    def __init__(
        self,
        config: ApplicationConfig,
        client: Optional[AsyncOpenAI] = None,
        retry_policy: Optional[RetryPolicy] = None,
        image_limiter: Optional[SlidingWindowRateLimiter] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.config = config

        if client is None:
            if not config.openai_api_key:
                raise ConfigurationError("OpenAI API key not configured (NEWSLETTER_OPENAI_API_KEY)")
            # SDK retries are off; retry_policy is the only inner retry layer
            client = AsyncOpenAI(
                api_key=config.openai_api_key,
                max_retries=0,
                timeout=config.request_timeout,
            )
        self.client = client

        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.openai_max_retries + 1,
            base_delay=config.openai_retry_base_delay,
            multiplier=2.0,
            sleep=sleep,
        )
        self.image_limiter = image_limiter or SlidingWindowRateLimiter(
            max_requests=config.image_requests_per_minute,
            period=60.0,
            sleep=sleep,
        )

    async def _complete(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.config.openai_model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=self.config.openai_temperature,
            )
        except TRANSIENT_OPENAI_ERRORS as e:
            raise TransientProviderError(
                f"OpenAI transient error: {e}",
                details={"exception_type": type(e).__name__},
            ) from e
        except OpenAIError as e:
            raise ContentProviderError(
                f"OpenAI request failed: {e}",
                details={"exception_type": type(e).__name__},
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise TransientProviderError("OpenAI returned an empty completion")

        if response.usage:
            self.logger.debug(
                "Completion received",
                model=self.config.openai_model,
                total_tokens=response.usage.total_tokens,
            )
        return content

    async def generate_text(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        """Generate section text, retrying transient failures with backoff.

        Raises:
            TransientProviderError: All internal retries were exhausted
            ContentProviderError: The request was rejected outright
        """
        return await self.retry_policy.execute(
            self._complete,
            messages,
            max_tokens,
            retry_on=(TransientProviderError,),
            on_retry=lambda attempt, error, delay: self.logger.warning(
                "OpenAI call failed, backing off",
                attempt=attempt,
                delay_seconds=delay,
                error=str(error),
            ),
        )

    async def generate_image(self, prompt: str) -> str:
        """Generate one image; blocks while the per-minute window is full."""
        await self.image_limiter.acquire()

        try:
            response = await self.client.images.generate(
                model=self.config.openai_image_model,
                prompt=prompt,
                n=1,
                size=self.config.openai_image_size,
            )
        except TRANSIENT_OPENAI_ERRORS as e:
            raise TransientProviderError(f"OpenAI image generation error: {e}") from e
        except OpenAIError as e:
            raise ContentProviderError(f"OpenAI image request failed: {e}") from e

        url = response.data[0].url if response.data else None
        if not url:
            raise ContentProviderError("OpenAI image response contained no URL")

        self.logger.info("Image generated", model=self.config.openai_image_model)
        return url
