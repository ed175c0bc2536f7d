"""Store writes against an unreachable database."""

import pytest

from ragbot.errors import PersistenceError
from ragbot.services.usage import utc_today
from ragbot.stores import ChatStore, DocumentStore, SectionRow, UsageStore, WidgetEventStore


def unreachable():
    raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")


async def test_create_document():
    with pytest.raises(PersistenceError) as exc:
        await DocumentStore(unreachable).create_document("t-1", "policy.txt", "upload://policy.txt")
    assert "Connect call failed" in exc.value.details


async def test_add_sections():
    with pytest.raises(PersistenceError):
        await DocumentStore(unreachable).add_sections(1, "t-1", [SectionRow(content="refund", embedding=[1.0])])


async def test_usage_increment():
    with pytest.raises(PersistenceError):
        await UsageStore(unreachable).increment("t-1", "/chat", utc_today())


async def test_chat_save():
    with pytest.raises(PersistenceError):
        await ChatStore(unreachable).save("conv-1", "user-1", {"id": "conv-1", "messages": []})


async def test_widget_event():
    with pytest.raises(PersistenceError):
        await WidgetEventStore(unreachable).record("t-1", "widget_load")
