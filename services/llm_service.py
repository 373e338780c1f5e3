import os
import json
import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from services.credential_provider import CredentialProvider, load_credential_provider
from services.llm_factory import LLMFactory, LLMProvider

logger = logging.getLogger(__name__)

LLM_PROVIDER = os.getenv("LLM_PROVIDER", LLMProvider.OPENAI)
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))

# Error categories surfaced to users
BAD_INPUT = "bad_input"
SERVICE_UNAVAILABLE = "service_unavailable"
UNKNOWN = "unknown"


class LLMGenerationError(Exception):
    """Raised when the LLM fails to generate a response."""
    category = UNKNOWN
    retryable = False


class LLMJSONParseError(LLMGenerationError):
    """Raised when the LLM response cannot be parsed as JSON."""


class LLMRateLimitError(LLMGenerationError):
    """The provider rejected the call because of quota or rate limits."""
    category = SERVICE_UNAVAILABLE
    retryable = True


class LLMAuthenticationError(LLMGenerationError):
    """The credential used for the call was rejected."""
    category = SERVICE_UNAVAILABLE
    retryable = True


class LLMTimeoutError(LLMGenerationError):
    """The call exceeded the per-request timeout."""
    category = SERVICE_UNAVAILABLE
    retryable = True


class LLMServiceUnavailableError(LLMGenerationError):
    """Connection failures and 5xx responses from the provider."""
    category = SERVICE_UNAVAILABLE
    retryable = True


def classify_error(exc: BaseException) -> LLMGenerationError:
    """Map provider/SDK exceptions onto the LLM error taxonomy."""
    if isinstance(exc, LLMGenerationError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, openai.APITimeoutError)):
        return LLMTimeoutError("The AI service did not respond in time. Please try again.")
    if isinstance(exc, openai.RateLimitError):
        return LLMRateLimitError("API rate limit exceeded. Please try again in a moment.")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return LLMAuthenticationError("The configured API key is invalid or not permitted.")
    if isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
        return LLMServiceUnavailableError(f"The AI service is unavailable: {exc}")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 429:
            return LLMRateLimitError("API rate limit exceeded. Please try again in a moment.")
        if exc.status_code in (401, 403):
            return LLMAuthenticationError("The configured API key is invalid or not permitted.")
        if exc.status_code >= 500:
            return LLMServiceUnavailableError(f"The AI service is unavailable: {exc}")
    return LLMGenerationError(f"An unknown error occurred with the AI service: {exc}")


def build_user_content(prompt: str, images: Optional[Sequence[str]] = None) -> Any:
    """Plain string for text-only prompts, multi-part content when images are attached."""
    if not images:
        return prompt
    parts: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
    for image in images:
        url = image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"
        parts.append({"type": "image_url", "image_url": {"url": url}})
    return parts


class LLMRequestClient:
    """
    Issues structured and free-text requests to the LLM service.

    Every call takes the next credential from the provider (round-robin on
    every call). An authentication or rate-limit failure is retried once on
    the next credential in rotation, then surfaced. Every call is bounded by
    a timeout that surfaces as a retryable LLMTimeoutError.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        provider: str = LLM_PROVIDER,
        model: Optional[str] = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
        max_rotation_retries: int = 1,
        client_factory: Callable[..., AsyncOpenAI] = LLMFactory.get_client,
    ):
        self.credentials = credentials
        self.provider = provider
        self.model = model or LLMFactory.get_default_model(provider)
        self.timeout = timeout
        self.max_rotation_retries = max_rotation_retries
        self._client_factory = client_factory

    async def _execute(self, operation: Callable[[AsyncOpenAI], Awaitable[Any]], label: str) -> Any:
        retries = 0
        while True:
            try:
                api_key = self.credentials.next()
                client = self._client_factory(provider=self.provider, api_key=api_key, timeout=self.timeout)
            except Exception as e:
                logger.error(f"{label}: could not create the LLM client: {e}")
                raise LLMGenerationError(f"The AI service is not configured correctly: {e}") from e

            try:
                return await asyncio.wait_for(operation(client), timeout=self.timeout)
            except LLMGenerationError:
                raise
            except Exception as e:
                error = classify_error(e)
                if isinstance(error, (LLMRateLimitError, LLMAuthenticationError)) and retries < self.max_rotation_retries:
                    retries += 1
                    logger.warning(f"{label}: {type(error).__name__}, retrying with next credential ({retries}/{self.max_rotation_retries})")
                    continue
                logger.error(f"{label} failed: {error}")
                raise error from e

    @staticmethod
    def _messages(prompt: str, images: Optional[Sequence[str]], system_prompt: str) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": build_user_content(prompt, images)})
        return messages

    async def generate_text(
        self,
        prompt: str,
        images: Optional[Sequence[str]] = None,
        system_prompt: str = "",
        temperature: float = 0.7,
    ) -> str:
        """
        Generates a free-text response.
        Raises:
            LLMGenerationError (or a subclass) if the call fails.
        """
        messages = self._messages(prompt, images, system_prompt)

        async def call(client: AsyncOpenAI) -> str:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
            )
            if not response.choices or not response.choices[0].message.content:
                logger.error("LLM returned empty response or no content")
                raise LLMGenerationError("LLM returned empty response")
            return response.choices[0].message.content

        return await self._execute(call, "LLM text generation")

    async def generate_json(
        self,
        prompt: str,
        images: Optional[Sequence[str]] = None,
        schema: Optional[Dict[str, Any]] = None,
        system_prompt: str = "You are a helpful assistant designed to output JSON.",
        temperature: float = 0.3,
    ) -> Dict[str, Any]:
        """
        Generates a JSON response. Enforces JSON mode and, when a schema is
        given, instructs the model to follow it.
        Raises:
            LLMGenerationError: If the API call fails.
            LLMJSONParseError: If the response is not a JSON object.
        """
        if schema:
            system_prompt = (
                f"{system_prompt}\n"
                f"Respond ONLY with a JSON object conforming to this JSON schema:\n"
                f"{json.dumps(schema)}"
            )
        messages = self._messages(prompt, images, system_prompt)

        async def call(client: AsyncOpenAI) -> str:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"},
            )
            if not response.choices or not response.choices[0].message.content:
                logger.error("LLM returned empty response or no content")
                raise LLMGenerationError("LLM returned empty response")
            return response.choices[0].message.content

        content = await self._execute(call, "LLM JSON generation")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse LLM JSON response: {e}. Content: {content[:500]}")
            raise LLMJSONParseError(f"Failed to parse JSON from LLM response: {e}") from e

        if not isinstance(data, dict):
            raise LLMJSONParseError("LLM response was valid JSON but not an object")
        return data

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.5,
    ) -> AsyncIterator[str]:
        """Yields text deltas of a streamed chat completion."""

        async def call(client: AsyncOpenAI):
            return await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                stream=True,
            )

        stream = await self._execute(call, "LLM chat stream")
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except LLMGenerationError:
            raise
        except Exception as e:
            raise classify_error(e) from e


_client: Optional[LLMRequestClient] = None
_client_lock = threading.Lock()


def get_request_client() -> LLMRequestClient:
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                try:
                    credentials = load_credential_provider()
                except ValueError as e:
                    logger.error(f"LLM credentials unavailable: {e}")
                    raise LLMGenerationError(f"The AI service is not configured: {e}") from e
                _client = LLMRequestClient(credentials)
    return _client
