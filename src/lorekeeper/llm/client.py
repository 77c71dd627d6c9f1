"""Ollama client wrapper for text generation.

This module provides an async wrapper around the Ollama API used as the
engine's text generation provider, with bounded retries and error mapping
onto the ``GenerationError`` family.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import ollama

from lorekeeper.core.exceptions import (
    GenerationConnectionError,
    GenerationResponseError,
    GenerationTimeoutError,
    ModelNotFoundError,
)

logger = logging.getLogger(__name__)


class OllamaClient:
    """Async client for Ollama text generation.

    Args:
        base_url: Ollama server URL (default: http://localhost:11434)
        default_timeout: Timeout in seconds for each request (default: 60)
        max_retries: Maximum number of attempts for failed requests (default: 3)
        temperature: Default sampling temperature
        max_tokens: Default maximum tokens to generate
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        default_timeout: int = 60,
        max_retries: int = 3,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ):
        self.base_url = base_url
        self.default_timeout = default_timeout
        self.max_retries = max_retries
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = ollama.AsyncClient(host=base_url)

    async def _retry_with_backoff(
        self,
        func: Callable[[], Awaitable[Any]],
        model: str = "unknown",
    ) -> Any:
        """Execute function with exponential backoff retry.

        Raises:
            GenerationConnectionError: If all retries fail due to connection issues
            GenerationTimeoutError: If the request times out
            ModelNotFoundError: If the model is not found
            GenerationResponseError: On any other provider failure
        """
        last_exception: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                return await asyncio.wait_for(func(), timeout=self.default_timeout)
            except TimeoutError as e:
                # Timeouts are not retried
                raise GenerationTimeoutError(
                    f"Request timed out after {self.default_timeout}s"
                ) from e
            except ollama.ResponseError as e:
                if "not found" in str(e).lower():
                    raise ModelNotFoundError(model) from e
                last_exception = e
            except (ConnectionError, OSError) as e:
                last_exception = e
            except Exception as e:
                raise GenerationResponseError(f"Unexpected error: {e}") from e

            if attempt < self.max_retries - 1:
                # Exponential backoff: 1s, 2s, 4s
                logger.warning(f"Generation attempt {attempt + 1} failed: {last_exception}")
                await asyncio.sleep(2**attempt)

        raise GenerationConnectionError(
            f"Failed to reach Ollama at {self.base_url} after {self.max_retries} attempts"
        ) from last_exception

    async def generate(
        self,
        model: str,
        prompt: str,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate completion for a prompt.

        Args:
            model: Model name (e.g., "llama3:8b")
            prompt: The prompt text
            system: Optional system message
            temperature: Sampling temperature, defaults to the client setting
            max_tokens: Maximum tokens to generate, defaults to the client setting

        Returns:
            Generated text completion

        Raises:
            GenerationError: If generation fails for any reason
        """
        options = {
            "temperature": self.temperature if temperature is None else temperature,
            "num_predict": self.max_tokens if max_tokens is None else max_tokens,
        }

        async def _generate() -> str:
            response = await self._client.generate(
                model=model,
                prompt=prompt,
                system=system,
                options=options,
            )
            return response.get("response", "")  # type: ignore[no-any-return]

        return await self._retry_with_backoff(_generate, model=model)  # type: ignore[no-any-return]

    async def health_check(self) -> bool:
        """Check if the Ollama service is reachable."""
        try:
            await self.list_models()
            return True
        except Exception:
            return False

    async def list_models(self) -> list[str]:
        """List available models.

        Raises:
            GenerationConnectionError: If connection to Ollama fails
        """

        async def _list_models() -> list[str]:
            response = await self._client.list()
            models = response.get("models", [])
            return [m.get("model") or m.get("name", "") for m in models if m.get("model") or m.get("name")]

        return await self._retry_with_backoff(_list_models, model="list")  # type: ignore[no-any-return]
