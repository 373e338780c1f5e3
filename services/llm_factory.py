# services/llm_factory.py
import os
import logging
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class LLMProvider:
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    LOCAL = "local"


class LLMFactory:
    """
    Creates and caches async LLM clients.
    One client per (provider, credential, endpoint) so rotating keys reuse
    their connection pools instead of rebuilding them on every call.
    """

    _instances: Dict[Tuple[Any, ...], AsyncOpenAI] = {}

    @staticmethod
    def get_client(
        provider: str = LLMProvider.OPENAI,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 45.0,
        max_retries: int = 0,
    ) -> AsyncOpenAI:
        # 1. Resolve provider defaults
        if provider == LLMProvider.OPENROUTER:
            api_key = api_key or os.getenv("OPENROUTER_API_KEY")
            base_url = base_url or "https://openrouter.ai/api/v1"
            if not api_key:
                raise ValueError("OPENROUTER_API_KEY not set")

        elif provider == LLMProvider.OPENAI:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY not set")

        elif provider == LLMProvider.LOCAL:
            base_url = base_url or os.getenv("LOCAL_LLM_URL", "http://localhost:11434/v1")
            api_key = api_key or "ollama"  # Ollama ignores the key

        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        # 2. Config-aware caching
        cache_key = (
            provider,
            api_key or "",
            base_url or "",
            float(timeout),
            int(max_retries),
        )

        if cache_key in LLMFactory._instances:
            return LLMFactory._instances[cache_key]

        logger.info(f"Initializing async LLM client for provider: {provider} (Config Key: {hash(cache_key)})")

        try:
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=max_retries,
            )
        except Exception as e:
            logger.error(f"Failed to initialize {provider} client: {e}")
            raise

        LLMFactory._instances[cache_key] = client
        return client

    @staticmethod
    def get_default_model(provider: str) -> str:
        if provider == LLMProvider.OPENROUTER:
            return os.getenv("OPENROUTER_MODEL", "google/gemini-2.0-flash-exp:free")
        elif provider == LLMProvider.OPENAI:
            return os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        elif provider == LLMProvider.LOCAL:
            return os.getenv("LOCAL_MODEL", "llama3")
        return "gpt-4o-mini"

    @staticmethod
    def clear_cache() -> None:
        LLMFactory._instances.clear()
