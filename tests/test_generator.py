"""Grounded vs streaming response generation and conversation persistence."""

import pytest

from ragbot.errors import GenerationServiceError, PersistenceError, ValidationError
from ragbot.services.generator import GROUNDED, STREAMING, Complete, ResponseGenerator, Stream
from ragbot.services.rag import Retriever
from ragbot.stores import ChatStore, DocumentStore, SectionRow

from .conftest import FakeChat, FakeEmbedder, load_chat


@pytest.fixture
def chats(session_factory) -> ChatStore:
    return ChatStore(session_factory)


@pytest.fixture
def generator(session_factory, embedder, chat_client, chats) -> ResponseGenerator:
    retriever = Retriever(DocumentStore(session_factory), embedder, threshold=0.5, top_k=5)
    return ResponseGenerator(retriever, chat_client, chats)


@pytest.fixture
async def refund_policy(session_factory, tenant_a):
    store = DocumentStore(session_factory)
    doc = await store.create_document(tenant_a.id, "policy.txt", "upload://policy.txt")
    text = "Refunds are issued within 30 days of the refund request."
    await store.add_sections(doc.id, tenant_a.id, [SectionRow(content=text, embedding=await FakeEmbedder().embed(text))])
    return text


def _ask(question: str):
    return [{"role": "user", "content": question}]


async def _drain(stream: Stream) -> str:
    return "".join([f async for f in stream.fragments])


async def test_grounded_answer(generator, chat_client, chats, tenant_a, refund_policy):
    result = await generator.respond(tenant_a.id, "user-1", None, _ask("What is the refund window?"))

    assert isinstance(result, Complete)
    assert result.mode == GROUNDED
    assert result.text == chat_client.reply
    sent = chat_client.complete_calls[0]
    assert sent[-1]["role"] == "user"
    assert sent[-1]["content"].startswith("Context from uploaded documents:\n" + refund_policy)
    assert sent[-1]["content"].endswith("What is the refund window?")
    assert chat_client.stream_calls == []

    saved = await load_chat(chats.session_factory, result.conversation_id)
    assert saved.user_id == "user-1"
    payload = saved.payload
    assert payload["id"] == result.conversation_id
    assert payload["title"] == "What is the refund window?"
    assert payload["userId"] == "user-1"
    assert payload["path"] == f"/chat/{result.conversation_id}"
    # The stored history keeps the user's own question, not the augmented prompt
    assert payload["messages"] == [
        {"role": "user", "content": "What is the refund window?"},
        {"role": "assistant", "content": chat_client.reply},
    ]


async def test_other_tenant_gets_no_context(generator, chat_client, tenant_a, tenant_b, refund_policy):
    result = await generator.respond(tenant_b.id, "user-2", None, _ask("What is the refund window?"))
    assert isinstance(result, Stream)
    await _drain(result)
    assert chat_client.complete_calls == []


async def test_streaming_persists_after_completion(generator, chat_client, chats, tenant_b):
    messages = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
        {"role": "user", "content": "What is the capital of France?"},
    ]
    result = await generator.respond(tenant_b.id, "user-2", "conv-1", messages)

    assert isinstance(result, Stream)
    assert result.mode == STREAMING
    assert result.conversation_id == "conv-1"
    assert chat_client.stream_calls == [messages]
    assert await load_chat(chats.session_factory, "conv-1") is None

    assert await _drain(result) == "Paris is the capital."
    saved = await load_chat(chats.session_factory, "conv-1")
    assert saved.payload["title"] == "Hi"
    assert saved.payload["messages"][-1] == {"role": "assistant", "content": "Paris is the capital."}
    assert len(saved.payload["messages"]) == 4


async def test_abandoned_stream_persists_nothing(generator, chats, tenant_b):
    result = await generator.respond(tenant_b.id, "user-2", "conv-2", _ask("Capital of France?"))
    fragments = result.fragments
    assert await fragments.__anext__() == "Paris "
    await fragments.aclose()
    assert await load_chat(chats.session_factory, "conv-2") is None


async def test_mid_stream_failure_persists_nothing(session_factory, embedder, chats, tenant_b):
    retriever = Retriever(DocumentStore(session_factory), embedder)
    generator = ResponseGenerator(retriever, FakeChat(fail_at=2), chats)

    result = await generator.respond(tenant_b.id, "user-2", "conv-3", _ask("Capital of France?"))
    received = []
    with pytest.raises(GenerationServiceError):
        async for fragment in result.fragments:
            received.append(fragment)
    assert received == ["Paris ", "is the "]
    assert await load_chat(chats.session_factory, "conv-3") is None


async def test_immediate_failure_raises_before_streaming(session_factory, embedder, chats, tenant_b):
    retriever = Retriever(DocumentStore(session_factory), embedder)
    generator = ResponseGenerator(retriever, FakeChat(fail_at=0), chats)

    with pytest.raises(GenerationServiceError):
        await generator.respond(tenant_b.id, "user-2", "conv-4", _ask("Capital of France?"))
    assert await load_chat(chats.session_factory, "conv-4") is None


async def test_empty_upstream_stream(session_factory, embedder, chats, tenant_b):
    retriever = Retriever(DocumentStore(session_factory), embedder)
    generator = ResponseGenerator(retriever, FakeChat(fragments=()), chats)

    result = await generator.respond(tenant_b.id, "user-2", "conv-5", _ask("Anything?"))
    assert await _drain(result) == ""
    saved = await load_chat(chats.session_factory, "conv-5")
    assert saved.payload["messages"][-1] == {"role": "assistant", "content": ""}


async def test_existing_conversation_is_updated(generator, chats, tenant_b):
    first = await generator.respond(tenant_b.id, "user-2", "conv-6", _ask("Capital of France?"))
    await _drain(first)
    second = await generator.respond(
        tenant_b.id,
        "user-2",
        "conv-6",
        _ask("Capital of France?") + [{"role": "assistant", "content": "Paris is the capital."}, *_ask("And Italy?")],
    )
    await _drain(second)

    saved = await load_chat(chats.session_factory, "conv-6")
    assert len(saved.payload["messages"]) == 4


async def test_conversation_of_another_user_is_not_overwritten(generator, chats, tenant_b):
    await _drain(await generator.respond(tenant_b.id, "user-2", "conv-7", _ask("Capital of France?")))
    hijack = await generator.respond(tenant_b.id, "intruder", "conv-7", _ask("Capital of Spain?"))
    with pytest.raises(PersistenceError):
        await _drain(hijack)
    assert (await load_chat(chats.session_factory, "conv-7")).user_id == "user-2"


async def test_conversation_id_is_generated(generator, tenant_b):
    result = await generator.respond(tenant_b.id, "user-2", None, _ask("Hi"))
    assert len(result.conversation_id) == 32
    await _drain(result)


async def test_only_last_message_is_embedded(generator, embedder, tenant_b):
    messages = [
        {"role": "user", "content": "Tell me about shipping"},
        {"role": "assistant", "content": "Shipping takes two days."},
        {"role": "user", "content": "And refunds?"},
    ]
    await _drain(await generator.respond(tenant_b.id, "user-2", None, messages))
    assert embedder.calls == ["And refunds?"]


async def test_empty_messages_rejected(generator, tenant_b):
    with pytest.raises(ValidationError):
        await generator.respond(tenant_b.id, "user-2", None, [])
