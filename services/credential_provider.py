# services/credential_provider.py
import os
import logging
import threading
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Anything that hands out the credential to use for the next LLM call."""

    def next(self) -> str:
        ...

    def __len__(self) -> int:
        ...


class RoundRobinCredentialProvider:
    """
    Rotates through a pool of API keys on every call (not only on failure)
    so load is spread across the pool.
    """

    def __init__(self, keys: List[str]):
        cleaned = [k.strip() for k in keys if k and k.strip()]
        if not cleaned:
            raise ValueError("At least one API key is required")
        self._keys = cleaned
        self._index = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            key = self._keys[self._index]
            self._index = (self._index + 1) % len(self._keys)
            return key

    def __len__(self) -> int:
        return len(self._keys)


def load_credential_provider(raw_keys: Optional[str] = None) -> RoundRobinCredentialProvider:
    """
    Build the default provider from PRISM_API_KEYS (comma-separated) and
    fall back to the single OPENAI_API_KEY.
    """
    raw_keys = raw_keys if raw_keys is not None else os.getenv("PRISM_API_KEYS", "")
    keys = [k for k in raw_keys.split(",") if k.strip()]

    if not keys:
        single = os.getenv("OPENAI_API_KEY")
        if not single:
            raise ValueError("Neither PRISM_API_KEYS nor OPENAI_API_KEY is set")
        keys = [single]

    logger.info(f"Credential pool loaded with {len(keys)} key(s)")
    return RoundRobinCredentialProvider(keys)
