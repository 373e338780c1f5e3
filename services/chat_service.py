# services/chat_service.py
import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from services.generation.analysis_generators import generate_grounding_summary
from services.generation.base import GenerationError
from services.generation.prompts import SYSTEM_PROMPTS, TEXT_LIMITS
from services.llm_service import LLMGenerationError, LLMRequestClient, build_user_content, get_request_client
from state.state_schema import DocumentContext
from utils.sanitization import truncate_for_prompt

logger = logging.getLogger(__name__)

CHAT_ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."


class ChatSessionClosed(Exception):
    """A message was sent to a chat session after close()."""


class ChatSession:
    """
    Conversation about one document.

    The grounding summary is derived lazily on the first message unless
    one is supplied (the core analysis summary is a good seed). Each turn
    streams the reply: tokens are appended to the in-progress model
    message as they arrive, so `messages` always reflects what the user
    has seen so far.
    """

    def __init__(
        self,
        document: DocumentContext,
        client: Optional[LLMRequestClient] = None,
        grounding_summary: Optional[str] = None,
    ):
        self.document = document
        self._client = client
        self.grounding_summary = grounding_summary
        self.messages: List[Dict[str, Any]] = []
        self.closed = False
        self._turn_lock = asyncio.Lock()

    @property
    def client(self) -> LLMRequestClient:
        if self._client is None:
            self._client = get_request_client()
        return self._client

    async def ensure_summary(self) -> str:
        if self.grounding_summary:
            return self.grounding_summary
        try:
            self.grounding_summary = await generate_grounding_summary(self.document.text, client=self.client)
        except (GenerationError, LLMGenerationError) as e:
            logger.warning(f"Chat grounding summary unavailable, using document excerpt: {e}")
            self.grounding_summary = truncate_for_prompt(self.document.text, TEXT_LIMITS["grounding_summary"])
        return self.grounding_summary

    def _provider_messages(self, summary: str) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": SYSTEM_PROMPTS["chat"].format(summary=summary)}
        ]
        # The last entry is the empty in-progress reply
        for message in self.messages[:-1]:
            role = "assistant" if message["role"] == "model" else "user"
            images = [message["image"]] if message.get("image") else None
            content = build_user_content(message["text"], images) if role == "user" else message["text"]
            messages.append({"role": role, "content": content})
        return messages

    async def send_message(self, text: str, image: Optional[str] = None) -> AsyncIterator[str]:
        """
        Stream the reply to `text` (optionally with an image data URL).
        A provider failure ends the turn with an apology appended to the
        reply instead of raising.
        """
        if self.closed:
            raise ChatSessionClosed("Chat session is closed")

        async with self._turn_lock:
            summary = await self.ensure_summary()

            user_message: Dict[str, Any] = {"role": "user", "text": text}
            if image:
                user_message["image"] = image
            self.messages.append(user_message)
            reply: Dict[str, Any] = {"role": "model", "text": ""}
            self.messages.append(reply)

            try:
                async for delta in self.client.stream_chat(self._provider_messages(summary)):
                    if self.closed:
                        break
                    reply["text"] += delta
                    yield delta
            except LLMGenerationError as e:
                logger.error(f"Chat turn failed: {e}")
                suffix = CHAT_ERROR_MESSAGE if not reply["text"] else f"\n\n{CHAT_ERROR_MESSAGE}"
                reply["text"] += suffix
                yield suffix

    def close(self) -> None:
        self.closed = True
        self.messages = []
        self.grounding_summary = None
