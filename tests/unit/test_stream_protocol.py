import asyncio
import json

import pytest

from blueprint_chat.agent.protocol import (
    DoneEvent,
    EditsEvent,
    ErrorEvent,
    EventChannel,
    TextEvent,
    encode_event,
    event_payload,
)
from blueprint_chat.types import PendingEdit


def _decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


def test_wire_shapes() -> None:
    edit = PendingEdit("crossAnalysisSynthesis", "nextSteps", [], ["Ship"], "why", "- Old: []\n+ New: [\"Ship\"]")

    assert _decode(encode_event(TextEvent(content="Hi"))) == {"type": "text", "content": "Hi"}
    assert _decode(encode_event(ErrorEvent(message="boom"))) == {"type": "error", "error": "boom"}

    edits = event_payload(EditsEvent(pending_edits=[edit], confidence="high"))
    assert edits["type"] == "edits"
    assert edits["confidence"] == "high"
    assert edits["pendingEdits"][0]["fieldPath"] == "nextSteps"
    assert edits["pendingEdits"][0]["diffPreview"].startswith("- Old:")


def test_done_omits_unset_optional_fields() -> None:
    plain = event_payload(DoneEvent(metadata={"processingTime": 12}))
    failed = event_payload(DoneEvent(metadata={}, error=True, confidence="low"))

    assert plain == {"type": "done", "done": True, "metadata": {"processingTime": 12}}
    assert failed["error"] is True
    assert failed["confidence"] == "low"
    assert "sources" not in failed


@pytest.mark.asyncio
async def test_channel_delivers_in_order_then_stops_on_close() -> None:
    channel = EventChannel(maxsize=2)

    async def produce() -> None:
        try:
            for index in range(5):
                await channel.send(TextEvent(content=str(index)))
        finally:
            channel.close()

    producer = asyncio.create_task(produce())
    received = [event.content async for event in channel.events()]
    await producer

    assert received == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_close_on_full_channel_does_not_block() -> None:
    channel = EventChannel(maxsize=1)
    await channel.send(TextEvent(content="only"))

    channel.close()
    received = [event async for event in channel.events()]

    assert received == [TextEvent(content="only")]
    with pytest.raises(RuntimeError):
        await channel.send(TextEvent(content="late"))
