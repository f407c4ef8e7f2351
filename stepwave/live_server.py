"""WebSocket server for live code updates.

An editor (or any WebSocket client) sends JSON messages; the server
evaluates the code on the engine and answers.

Protocol
────────
``{"type": "code_update", "code": "..."}``
	Evaluate ``code``. Reply: ``{"type": "evaluated", "ok": bool, "errors": [...]}``.
	On success the update is forwarded to every other connected client as
	``{"type": "code_update", "code": "..."}`` (last write wins).

``{"type": "state"}``
	Reply: ``{"type": "state", ...}`` with the engine snapshot.

Anything else, including text that is not a JSON object, gets an
``{"type": "error", "message": "..."}`` reply and the connection stays open.

The server binds to ``localhost`` by default. Evaluated text is pattern
notation, never Python.
"""

import json
import logging
import typing

import websockets.asyncio.server
import websockets.exceptions

import stepwave.errors


logger = logging.getLogger(__name__)


class LiveServer:

	"""Async WebSocket server that feeds code updates into a running engine."""

	def __init__ (self, engine: typing.Any, port: int = 8765, host: str = "127.0.0.1") -> None:

		"""Store a reference to the engine and the address to listen on. Port 0 picks a free port."""

		self._engine = engine
		self._host = host
		self._port = port
		self._server: typing.Optional[websockets.asyncio.server.Server] = None
		self._clients: typing.Set[websockets.asyncio.server.ServerConnection] = set()

	@property
	def port (self) -> int:

		"""The port actually bound (useful after starting on port 0)."""

		if self._server is not None:
			for sock in self._server.sockets:
				return int(sock.getsockname()[1])

		return self._port

	async def start (self) -> None:

		"""Start listening for connections."""

		self._server = await websockets.asyncio.server.serve(self._handle_client, self._host, self._port)

		logger.info(f"Live server listening on ws://{self._host}:{self.port}")

	async def stop (self) -> None:

		"""Close the server and wait for it to shut down."""

		if self._server is not None:
			self._server.close()
			await self._server.wait_closed()
			self._server = None
			logger.info("Live server stopped")

	async def _handle_client (self, websocket: websockets.asyncio.server.ServerConnection) -> None:

		"""Answer messages from one client until it disconnects."""

		peer = websocket.remote_address
		logger.info(f"Live client connected: {peer}")

		self._clients.add(websocket)

		try:
			async for message in websocket:
				reply = await self._handle_message(message, websocket)
				await websocket.send(json.dumps(reply))

		except websockets.exceptions.ConnectionClosed:
			pass

		finally:
			self._clients.discard(websocket)
			logger.info(f"Live client disconnected: {peer}")

	async def _handle_message (self, message: typing.Union[str, bytes], sender: typing.Any = None) -> typing.Dict[str, typing.Any]:

		"""Decode one message and return the reply."""

		try:
			data = json.loads(message)
		except (TypeError, ValueError):
			logger.warning("Live client sent malformed JSON")
			return {"type": "error", "message": "Malformed JSON"}

		if not isinstance(data, dict):
			return {"type": "error", "message": "Expected a JSON object"}

		kind = data.get("type")

		if kind == "code_update":
			return await self._code_update(data, sender)

		if kind == "state":
			return {"type": "state", **self._engine.snapshot()}

		return {"type": "error", "message": f"Unsupported message type: {kind!r}"}

	async def _code_update (self, data: typing.Dict[str, typing.Any], sender: typing.Any) -> typing.Dict[str, typing.Any]:

		"""Evaluate the code in a ``code_update`` message and forward it on success."""

		code = data.get("code")

		if not isinstance(code, str):
			return {"type": "error", "message": "code_update needs a string 'code'"}

		try:
			await self._engine.evaluate(code)

		except stepwave.errors.EvaluationError as exc:
			return {"type": "evaluated", "ok": False, "errors": exc.errors or [str(exc)]}

		others = [client for client in self._clients if client is not sender]

		if others:
			websockets.asyncio.server.broadcast(others, json.dumps({"type": "code_update", "code": code}))

		return {"type": "evaluated", "ok": True, "errors": []}
