import asyncio
import json
import logging

import numpy as np
import pytest

from realtime_client import RealtimeClient
from realtime_client.errors import OpenAIRealtimeError
from realtime_client.models import FunctionDefinition, TurnDetectionConfig
from .helpers import assistant_message, make_event, pcm_b64, user_message


class FakeWebSocket:
    """Records what the client sends instead of talking to the server."""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def sent_types(self):
        return [e["type"] for e in self.sent]


@pytest.fixture
def client():
    return RealtimeClient(api_key="sk-test")


@pytest.fixture
def ws(client):
    ws = FakeWebSocket()
    client.realtime.ws = ws
    return ws


def receive(client, type_, **payload):
    client.realtime.receive(type_, make_event(type_, **payload))


def receive_assistant_response(client, content):
    receive(client, "response.created", response={"id": "resp_1"})
    receive(client, "response.output_item.added", response_id="resp_1", item=assistant_message("a"))
    receive(client, "conversation.item.created", item=assistant_message("a", content))


# ===== session =====
@pytest.mark.asyncio
async def test_update_session_offline_only_updates_config(client):
    assert await client.update_session(instructions="be nice", turn_detection=TurnDetectionConfig()) is True
    assert client.session_config.instructions == "be nice"
    assert client.session_config.voice == "verse"
    assert client.get_turn_detection_type() == "server_vad"

    await client.update_session(turn_detection=None)
    assert client.get_turn_detection_type() is None
    assert client.session_config.instructions == "be nice"


@pytest.mark.asyncio
async def test_update_session_rejects_unknown_keys(client):
    with pytest.raises(ValueError):
        await client.update_session(not_a_setting=True)


@pytest.mark.asyncio
async def test_update_session_sends_when_connected(client, ws):
    await client.update_session(voice="alloy")
    assert ws.sent_types() == ["session.update"]
    session = ws.sent[0]["session"]
    assert session["voice"] == "alloy"
    assert session["max_response_output_tokens"] == 4096
    assert session["turn_detection"] is None
    assert ws.sent[0]["event_id"].startswith("evt_")


@pytest.mark.asyncio
async def test_send_requires_connection(client):
    with pytest.raises(RuntimeError):
        await client.create_response()


@pytest.mark.asyncio
async def test_wait_for_session_created(client, ws):
    waiter = asyncio.create_task(client.wait_for_session_created())
    await asyncio.sleep(0)
    assert not waiter.done()
    receive(client, "session.created", session={"id": "sess_1"})
    assert await asyncio.wait_for(waiter, 1) is True
    assert client.session_created


# ===== tools =====
@pytest.mark.asyncio
async def test_add_tool_is_sent_with_session(client, ws):
    await client.add_tool({"name": "get_weather", "parameters": {"type": "object"}}, lambda args: "sunny")
    session = ws.sent[-1]["session"]
    assert [t["name"] for t in session["tools"]] == ["get_weather"]

    with pytest.raises(ValueError):
        await client.add_tool(FunctionDefinition(name="get_weather"), lambda args: None)
    with pytest.raises(ValueError):
        await client.update_session(tools=[{"name": "get_weather"}])

    assert client.remove_tool("get_weather") is True
    with pytest.raises(ValueError):
        client.remove_tool("get_weather")


@pytest.mark.asyncio
async def test_tool_call_round_trip(client, ws):
    calls = []

    async def get_weather(args):
        calls.append(args)
        return {"forecast": "sunny"}

    await client.add_tool({"name": "get_weather"}, get_weather)
    ws.sent.clear()

    receive(
        client,
        "conversation.item.created",
        item={"id": "f", "type": "function_call", "call_id": "call_1", "name": "get_weather"},
    )
    receive(client, "response.function_call_arguments.delta", item_id="f", delta='{"city": "Paris"}')
    receive(
        client,
        "response.output_item.done",
        item={"id": "f", "type": "function_call", "call_id": "call_1", "name": "get_weather", "status": "completed"},
    )
    await asyncio.sleep(0.01)

    assert calls == [{"city": "Paris"}]
    assert ws.sent_types() == ["conversation.item.create", "response.create"]
    item = ws.sent[0]["item"]
    assert item["type"] == "function_call_output"
    assert item["call_id"] == "call_1"
    assert json.loads(item["output"]) == {"forecast": "sunny"}


@pytest.mark.asyncio
async def test_tool_errors_are_sent_to_the_model(client, ws):
    def broken(args):
        raise KeyError("city")

    await client.add_tool({"name": "broken"}, broken)
    ws.sent.clear()
    receive(
        client,
        "response.output_item.done",
        item={"id": "f", "type": "function_call", "call_id": "call_1", "name": "broken"},
    )
    # the item was never created, so there is nothing to call
    await asyncio.sleep(0.01)
    assert ws.sent == []

    receive(
        client,
        "conversation.item.created",
        item={"id": "f", "type": "function_call", "call_id": "call_1", "name": "broken", "arguments": "{}"},
    )
    receive(
        client,
        "response.output_item.done",
        item={
            "id": "f",
            "type": "function_call",
            "call_id": "call_1",
            "name": "broken",
            "arguments": "{}",
            "status": "completed",
        },
    )
    await asyncio.sleep(0.01)
    assert ws.sent_types() == ["conversation.item.create", "response.create"]
    assert "error" in json.loads(ws.sent[0]["item"]["output"])


@pytest.mark.asyncio
async def test_incomplete_tool_calls_are_not_run(client, ws):
    calls = []
    await client.add_tool({"name": "get_weather"}, calls.append)
    ws.sent.clear()

    receive(
        client,
        "conversation.item.created",
        item={"id": "f", "type": "function_call", "call_id": "call_1", "name": "get_weather"},
    )
    receive(client, "response.function_call_arguments.delta", item_id="f", delta='{"ci')
    receive(
        client,
        "response.output_item.done",
        item={"id": "f", "type": "function_call", "call_id": "call_1", "name": "get_weather", "status": "incomplete"},
    )
    await asyncio.sleep(0.01)

    assert calls == []
    assert ws.sent == []
    assert client.conversation.get_item("f").status == "incomplete"


# ===== conversation events =====
@pytest.mark.asyncio
async def test_conversation_events_are_republished(client, ws):
    updated, appended, completed = [], [], []
    client.on("conversation.updated", updated.append)
    client.on("conversation.item.appended", appended.append)
    client.on("conversation.item.completed", completed.append)

    receive(client, "conversation.item.created", item=user_message("u", "hello"))
    assert [e["item"].id for e in appended] == ["u"]
    assert [e["item"].id for e in completed] == ["u"]

    receive_assistant_response(client, [{"type": "text", "text": ""}])
    receive(client, "response.text.delta", item_id="a", delta="Hi")
    assert updated[-1]["delta"] == {"text": "Hi"}
    assert updated[-1]["item"].formatted.text == "Hi"
    assert [e["item"].id for e in completed] == ["u"]

    receive(client, "response.output_item.done", item={**assistant_message("a"), "status": "completed"})
    # response.output_item.done is handled by an async listener
    await asyncio.sleep(0.01)
    assert [e["item"].id for e in completed] == ["u", "a"]
    assert [i.id for i in client.get_conversation_items()] == ["u", "a"]


@pytest.mark.asyncio
async def test_bad_events_are_logged_not_raised(client, ws, caplog):
    updated = []
    client.on("conversation.updated", updated.append)
    with caplog.at_level(logging.WARNING, logger="realtime_client.client"):
        receive(client, "conversation.item.truncated", item_id="nope", audio_end_ms=0)
    assert updated == []
    assert "nope" in caplog.text


@pytest.mark.asyncio
async def test_error_event(client, ws):
    errors = []
    client.on("error", errors.append)
    receive(client, "error", error={"type": "invalid_request_error", "code": "bad", "message": "nope"})
    assert len(errors) == 1
    assert isinstance(errors[0], OpenAIRealtimeError)
    assert errors[0].code == "bad"


@pytest.mark.asyncio
async def test_speech_started_interrupts(client, ws):
    interrupted = []
    client.on("conversation.interrupted", interrupted.append)
    receive(client, "input_audio_buffer.speech_started", item_id="u", audio_start_ms=0)
    assert len(interrupted) == 1
    assert "u" in client.conversation.state.queued_speech_items


@pytest.mark.asyncio
async def test_server_vad_speech_is_attached_to_user_item(client, ws):
    await client.update_session(turn_detection=TurnDetectionConfig())
    samples = np.arange(24000, dtype=np.int16)
    await client.append_input_audio(samples)
    assert ws.sent[-1]["type"] == "input_audio_buffer.append"
    assert ws.sent[-1]["audio"] == pcm_b64(samples)

    receive(client, "input_audio_buffer.speech_started", item_id="u", audio_start_ms=250)
    receive(client, "input_audio_buffer.speech_stopped", item_id="u", audio_end_ms=750)
    receive(client, "conversation.item.created", item={"id": "u", "type": "message", "role": "user", "content": []})
    item = client.conversation.get_item("u")
    assert item.formatted.audio.tolist() == samples[6000:18000].tolist()


@pytest.mark.asyncio
async def test_create_response_commits_audio_without_turn_detection(client, ws):
    await client.append_input_audio(np.array([0.5, -0.5], dtype=np.float32))
    await client.append_input_audio(np.array([], dtype=np.int16))
    await client.create_response()
    assert ws.sent_types() == ["input_audio_buffer.append", "input_audio_buffer.commit", "response.create"]
    assert len(client.input_audio_buffer) == 0

    receive(client, "conversation.item.created", item={"id": "u", "type": "message", "role": "user", "content": []})
    assert client.conversation.get_item("u").formatted.audio.tolist() == [16383, -16384]


@pytest.mark.asyncio
async def test_send_user_message_content(client, ws):
    await client.send_user_message_content(
        [{"type": "input_text", "text": "hi"}, {"type": "input_audio", "audio": np.array([1, 2], dtype=np.int16)}]
    )
    assert ws.sent_types() == ["conversation.item.create", "response.create"]
    content = ws.sent[0]["item"]["content"]
    assert content[0] == {"type": "input_text", "text": "hi"}
    assert content[1]["audio"] == pcm_b64([1, 2])


@pytest.mark.asyncio
async def test_delete_item(client, ws):
    assert await client.delete_item("a") is True
    assert ws.sent == [{"event_id": ws.sent[0]["event_id"], "type": "conversation.item.delete", "item_id": "a"}]


@pytest.mark.asyncio
async def test_cancel_response_truncates_audio(client, ws):
    receive_assistant_response(client, [{"type": "audio"}])
    receive(client, "response.audio.delta", item_id="a", delta=pcm_b64(np.zeros(24000, dtype=np.int16)))

    item = await client.cancel_response("resp_1", sample_count=12000)
    assert item.id == "a"
    assert ws.sent_types() == ["response.cancel", "conversation.item.truncate"]
    assert ws.sent[1]["audio_end_ms"] == 500
    assert ws.sent[1]["content_index"] == 0


@pytest.mark.asyncio
async def test_cancel_response_without_id(client, ws):
    assert await client.cancel_response() is None
    assert ws.sent_types() == ["response.cancel"]
    with pytest.raises(ValueError):
        await client.cancel_response("nope")


@pytest.mark.asyncio
async def test_wait_for_next_item(client, ws):
    async def later():
        await asyncio.sleep(0.01)
        receive(client, "conversation.item.created", item=user_message("u"))

    task = asyncio.create_task(later())
    item = await client.wait_for_next_item(timeout=1)
    await task
    assert item.id == "u"
    assert await client.wait_for_next_completed_item(timeout=0.01) is None


@pytest.mark.asyncio
async def test_debug_events():
    client = RealtimeClient(api_key="sk-test", debug=True)
    client.realtime.ws = FakeWebSocket()
    events = []
    client.on("realtime.event", events.append)

    await client.create_response()
    receive(client, "response.created", response={"id": "resp_1"})
    assert [(e["source"], e["event"]["type"]) for e in events] == [
        ("client", "response.create"),
        ("server", "response.created"),
    ]


# ===== lifecycle =====
@pytest.mark.asyncio
async def test_disconnect_clears_conversation(client, ws):
    receive(client, "conversation.item.created", item=user_message("u"))
    await client.disconnect()
    assert ws.closed
    assert not client.is_connected
    assert client.get_conversation_items() == []


@pytest.mark.asyncio
async def test_reset(client, ws):
    calls = []
    client.on("conversation.updated", calls.append)
    await client.add_tool({"name": "t"}, lambda args: None)
    await client.update_session(instructions="x")

    assert await client.reset() is True
    assert client.tools == {}
    assert client.session_config.instructions == ""

    # server events are still wired into the conversation, but the old listeners are gone
    client.realtime.ws = FakeWebSocket()
    receive(client, "conversation.item.created", item=user_message("u"))
    assert calls == []
    assert client.conversation.get_item("u") is not None
