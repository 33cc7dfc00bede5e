"""
Text generator client for question phrasing and response analysis.

Talks to an Ollama-compatible `/api/generate` endpoint. The generator is
treated as slow and unreliable: every request has a bounded timeout,
transient failures are retried with exponential backoff, and exhaustion
surfaces as DependencyUnavailableError for the caller to fall back on.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import httpx
from loguru import logger

from skillpath.core.errors import DependencyUnavailableError


class TextGenerator(Protocol):
    """Anything that turns a prompt into text."""

    async def generate(self, prompt: str) -> str:
        ...


class HttpTextGenerator:
    """
    HTTP text generator with timeout and retry.

    Retries on timeouts, 5xx responses and transport errors. 4xx responses
    are not retried.
    """

    def __init__(
        self,
        api_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout_ms: int = 8000,
        retry_attempts: int = 2,
        backoff_base_seconds: float = 0.5,
    ):
        """
        Initialize generator client.

        Args:
            api_url: Base URL of the generation service
            model: Model name sent with each request
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts before giving up
            backoff_base_seconds: First retry delay, doubled per attempt
        """
        self.api_url = api_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = retry_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> HttpTextGenerator:
        return cls(
            api_url=settings.text_generator_url,
            model=settings.text_generator_model,
            timeout_ms=settings.text_generator_timeout_ms,
            retry_attempts=settings.text_generator_retry_attempts,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> HttpTextGenerator:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def generate(self, prompt: str) -> str:
        """
        Generate text for a prompt.

        Returns:
            Generated text, stripped

        Raises:
            DependencyUnavailableError: On client errors or once retries are exhausted
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            wait_time = self.backoff_base_seconds * (2 ** attempt)
            try:
                response = await self.client.post(
                    f"{self.api_url}/api/generate",
                    json={"model": self.model, "prompt": prompt, "stream": False},
                )
                response.raise_for_status()
                payload = response.json()
                if not isinstance(payload, dict):
                    raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
                text = str(payload.get("response", "")).strip()
                if not text:
                    raise DependencyUnavailableError("text generator", "empty response")
                return text

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    f"Text generator timeout on attempt {attempt + 1}/{self.retry_attempts}."
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    logger.error(f"Text generator client error: {e.response.status_code}")
                    raise DependencyUnavailableError(
                        "text generator", f"HTTP {e.response.status_code}"
                    ) from e
                logger.warning(
                    f"Text generator server error {e.response.status_code} on attempt "
                    f"{attempt + 1}/{self.retry_attempts}."
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    f"Text generator request error on attempt {attempt + 1}/{self.retry_attempts}: {e}"
                )

            except ValueError as e:
                # Body was not a JSON object
                last_error = e
                logger.warning(f"Text generator returned malformed JSON: {e}")

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(wait_time)

        logger.error(f"Text generator failed after {self.retry_attempts} attempts: {last_error}")
        raise DependencyUnavailableError(
            "text generator", f"failed after {self.retry_attempts} attempts: {last_error}"
        )
