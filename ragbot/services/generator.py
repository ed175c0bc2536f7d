"""Dual-mode chat response generation.

With retrieved context the answer is generated in one blocking call and
returned as `Complete`. Without context the model is streamed and the caller
gets a `Stream` of text fragments. Either way the conversation is persisted
once, after the full answer exists; errors and early disconnects persist
nothing.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from ..errors import ValidationError
from ..logging_config import get_logger
from ..stores import ChatStore
from .llm import ChatClient
from .rag import Retriever, build_context, build_grounded_prompt

logger = get_logger(__name__)

GROUNDED = "grounded"
STREAMING = "streaming"


@dataclass(frozen=True)
class Complete:
    text: str
    conversation_id: str
    mode: str = GROUNDED


@dataclass(frozen=True)
class Stream:
    fragments: AsyncIterator[str]
    conversation_id: str
    mode: str = STREAMING


GenerationResult = Union[Complete, Stream]


def build_payload(conversation_id: str, user_id: str, messages: Sequence[Dict[str, str]], answer: str) -> Dict[str, Any]:
    return {
        "id": conversation_id,
        "title": messages[0]["content"][:100],
        "userId": user_id,
        "createdAt": int(time.time() * 1000),
        "path": f"/chat/{conversation_id}",
        "messages": [*messages, {"role": "assistant", "content": answer}],
    }


class ResponseGenerator:
    def __init__(self, retriever: Retriever, chat: ChatClient, chats: ChatStore):
        self.retriever = retriever
        self.chat = chat
        self.chats = chats

    async def respond(
        self,
        tenant_id: str,
        user_id: str,
        conversation_id: Optional[str],
        messages: Sequence[Dict[str, str]],
    ) -> GenerationResult:
        if not messages:
            raise ValidationError("messages cannot be empty")
        messages = [{"role": m["role"], "content": m["content"]} for m in messages]
        conversation_id = conversation_id or uuid.uuid4().hex
        question = messages[-1]["content"]

        chunks = await self.retriever.search(tenant_id, question)
        if chunks:
            logger.info("RAG mode for tenant %s: %d context sections", tenant_id, len(chunks))
            prompt = build_grounded_prompt(build_context(chunks), question)
            history: List[Dict[str, str]] = [*messages[:-1], {"role": "user", "content": prompt}]
            text = await self.chat.complete(history)
            await self.chats.save(conversation_id, user_id, build_payload(conversation_id, user_id, messages, text))
            return Complete(text=text, conversation_id=conversation_id)

        logger.info("Streaming mode for tenant %s: no matching context", tenant_id)
        upstream = self.chat.stream(messages)
        # Pull the first fragment now so upstream failures surface before any bytes are sent
        try:
            first = await upstream.__anext__()
        except StopAsyncIteration:
            first = None
        return Stream(
            fragments=self._relay(upstream, first, conversation_id, user_id, messages),
            conversation_id=conversation_id,
        )

    async def _relay(
        self,
        upstream: AsyncIterator[str],
        first: Optional[str],
        conversation_id: str,
        user_id: str,
        messages: List[Dict[str, str]],
    ) -> AsyncIterator[str]:
        parts: List[str] = []
        try:
            if first is not None:
                parts.append(first)
                yield first
            async for fragment in upstream:
                parts.append(fragment)
                yield fragment
        finally:
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()
        # Reached only when the stream ran to completion
        answer = "".join(parts)
        logger.info("Stream complete: %d fragments, %d chars", len(parts), len(answer))
        await self.chats.save(conversation_id, user_id, build_payload(conversation_id, user_id, messages, answer))
