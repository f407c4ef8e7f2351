import asyncio
import json
import typing

import pytest
import pytest_asyncio
import websockets.asyncio.client

import stepwave.engine
import stepwave.live_server


async def _exchange (websocket: typing.Any, message: typing.Any) -> typing.Dict[str, typing.Any]:

	"""Send one message (a dict is JSON-encoded) and return the decoded reply."""

	await websocket.send(message if isinstance(message, str) else json.dumps(message))
	reply = await asyncio.wait_for(websocket.recv(), timeout=5.0)

	return json.loads(reply)


@pytest_asyncio.fixture
async def server (engine: stepwave.engine.Engine) -> typing.AsyncIterator[stepwave.live_server.LiveServer]:

	"""A live server on a free port in front of an initialised engine."""

	await engine.initialize()

	live = stepwave.live_server.LiveServer(engine, port=0)
	await live.start()

	yield live

	await live.stop()
	await engine.dispose()


def _url (server: stepwave.live_server.LiveServer) -> str:

	return f"ws://127.0.0.1:{server.port}"


@pytest.mark.asyncio
async def test_code_update_evaluates (server: stepwave.live_server.LiveServer, engine: stepwave.engine.Engine) -> None:

	"""A valid code_update installs the pattern and reports ok."""

	async with websockets.asyncio.client.connect(_url(server)) as websocket:
		reply = await _exchange(websocket, {"type": "code_update", "code": '"bd ~ sd ~"'})

	assert reply == {"type": "evaluated", "ok": True, "errors": []}
	assert engine.active_pattern is not None
	assert engine.active_pattern.source == '"bd ~ sd ~"'


@pytest.mark.asyncio
async def test_invalid_code_reports_errors (server: stepwave.live_server.LiveServer, engine: stepwave.engine.Engine) -> None:

	"""Invalid code is refused with the validator's messages."""

	async with websockets.asyncio.client.connect(_url(server)) as websocket:
		reply = await _exchange(websocket, {"type": "code_update", "code": '"bd zz"'})

	assert reply["type"] == "evaluated"
	assert reply["ok"] is False
	assert reply["errors"] == ["Unknown sample: zz"]
	assert engine.active_pattern is None


@pytest.mark.asyncio
async def test_bad_messages_keep_connection_open (server: stepwave.live_server.LiveServer) -> None:

	"""Malformed JSON and unknown types get error replies; the socket stays usable."""

	async with websockets.asyncio.client.connect(_url(server)) as websocket:
		malformed = await _exchange(websocket, "{not json")
		unknown = await _exchange(websocket, {"type": "dance"})
		missing_code = await _exchange(websocket, {"type": "code_update"})
		listed = await _exchange(websocket, "[1, 2]")
		ok = await _exchange(websocket, {"type": "code_update", "code": '"hh*8"'})

	assert malformed == {"type": "error", "message": "Malformed JSON"}
	assert unknown["type"] == "error"
	assert "dance" in unknown["message"]
	assert missing_code["type"] == "error"
	assert listed["type"] == "error"
	assert ok["ok"] is True


@pytest.mark.asyncio
async def test_state_message (server: stepwave.live_server.LiveServer) -> None:

	"""A state request returns the engine snapshot."""

	async with websockets.asyncio.client.connect(_url(server)) as websocket:
		await _exchange(websocket, {"type": "code_update", "code": '"bd"'})
		state = await _exchange(websocket, {"type": "state"})

	assert state["type"] == "state"
	assert state["is_initialized"] is True
	assert state["is_playing"] is False
	assert state["pattern"] == '"bd"'
	assert state["bpm"] == 120.0


@pytest.mark.asyncio
async def test_code_update_is_forwarded_to_other_clients (server: stepwave.live_server.LiveServer) -> None:

	"""Accepted code reaches every other client; the sender only gets its reply."""

	async with websockets.asyncio.client.connect(_url(server)) as sender, websockets.asyncio.client.connect(_url(server)) as listener:

		# Make sure both connections are registered before sending.
		await _exchange(listener, {"type": "state"})

		reply = await _exchange(sender, {"type": "code_update", "code": '"cp*4"'})
		forwarded = json.loads(await asyncio.wait_for(listener.recv(), timeout=5.0))

	assert reply["ok"] is True
	assert forwarded == {"type": "code_update", "code": '"cp*4"'}
