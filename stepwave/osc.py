"""OSC integration for remote control and step broadcasting.

The server listens on a UDP port (default 9000) for control messages and,
when a send port is configured, reports engine state to a target host/port.

Receive Handlers
────────────────
- ``/play``: Start playback
- ``/stop``: Stop playback
- ``/panic``: Emergency stop (cuts every sound)
- ``/volume <0-100>``: Master volume in percent
- ``/bpm <number>``: Tempo override
- ``/evaluate <string>``: Evaluate pattern text

Send Events
───────────
- ``/step <int>``: On every step
- ``/bpm <float>``: On tempo change
- ``/playing <int>``: 1 on start, 0 on stop
"""

import asyncio
import logging
import typing

import pythonosc.dispatcher
import pythonosc.osc_server
import pythonosc.udp_client

import stepwave.errors

if typing.TYPE_CHECKING:
	from stepwave.engine import Engine


logger = logging.getLogger(__name__)


class OscServer:

	"""Async OSC server/client for controlling an engine."""

	def __init__ (
		self,
		engine: "Engine",
		receive_port: int = 9000,
		send_port: typing.Optional[int] = 9001,
		send_host: str = "127.0.0.1"
	) -> None:

		self._engine = engine
		self._receive_port = receive_port
		self._send_port = send_port
		self._send_host = send_host

		self._server: typing.Optional[typing.Any] = None
		self._transport: typing.Optional[asyncio.BaseTransport] = None
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None
		self._tasks: typing.Set[asyncio.Task] = set()
		self._dispatcher = pythonosc.dispatcher.Dispatcher()

		self._dispatcher.map("/play", self._handle_play)
		self._dispatcher.map("/stop", self._handle_stop)
		self._dispatcher.map("/panic", self._handle_panic)
		self._dispatcher.map("/volume", self._handle_volume)
		self._dispatcher.map("/bpm", self._handle_bpm)
		self._dispatcher.map("/evaluate", self._handle_evaluate)

		engine.on_event("step", self._send_step)
		engine.on_event("bpm", self._send_bpm)
		engine.on_event("start", self._send_started)
		engine.on_event("stop", self._send_stopped)

	@property
	def port (self) -> int:

		"""The UDP port actually bound (useful after starting on port 0)."""

		if self._transport is not None:
			return int(self._transport.get_extra_info("sockname")[1])

		return self._receive_port

	async def start (self) -> None:

		"""Start the OSC server and, if a send port is set, the client."""

		if self._send_port is not None:
			self._client = pythonosc.udp_client.SimpleUDPClient(self._send_host, self._send_port)

		self._server = pythonosc.osc_server.AsyncIOOSCUDPServer(
			("127.0.0.1", self._receive_port),
			self._dispatcher,
			asyncio.get_running_loop()  # type: ignore[arg-type]
		)

		transport, _ = await self._server.create_serve_endpoint()
		self._transport = transport

		target = f"{self._send_host}:{self._send_port}" if self._send_port is not None else "nowhere"
		logger.info(f"OSC listening on :{self.port}, sending to {target}")

	async def stop (self) -> None:

		"""Stop the OSC server and wait for pending commands."""

		if self._transport:
			self._transport.close()
			self._transport = None
			logger.info("OSC server stopped")

		if self._tasks:
			await asyncio.gather(*self._tasks, return_exceptions=True)

		self._client = None

	def send (self, address: str, *args: typing.Any) -> None:

		"""Send an OSC message."""

		if self._client:
			try:
				self._client.send_message(address, args)
			except Exception as e:
				logger.warning(f"OSC send error: {e}")

	def map (self, address: str, handler: typing.Callable) -> None:

		"""Register a custom OSC handler."""

		self._dispatcher.map(address, handler)

	def _run (self, coroutine: typing.Awaitable[typing.Any], address: str) -> None:

		"""Run an engine coroutine from a (synchronous) OSC handler."""

		async def _guarded () -> None:
			try:
				await coroutine
			except stepwave.errors.StepwaveError as exc:
				logger.warning(f"OSC {address} failed: {exc}")

		task = asyncio.get_running_loop().create_task(_guarded())
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	# Handlers

	def _handle_play (self, address: str, *args: typing.Any) -> None:
		self._run(self._engine.play(), address)

	def _handle_stop (self, address: str, *args: typing.Any) -> None:
		self._run(self._engine.stop(), address)

	def _handle_panic (self, address: str, *args: typing.Any) -> None:
		self._run(self._engine.emergency_stop(), address)

	def _handle_volume (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			self._engine.set_volume(float(args[0]))
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC volume argument: {args[0]}")

	def _handle_bpm (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			self._engine.set_bpm(float(args[0]))
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC BPM argument: {args[0]}")
		except stepwave.errors.PlaybackError as exc:
			logger.warning(f"OSC {address} failed: {exc}")

	def _handle_evaluate (self, address: str, *args: typing.Any) -> None:
		if not args or not isinstance(args[0], str):
			logger.warning("OSC /evaluate needs a string argument")
			return
		self._run(self._engine.evaluate(args[0]), address)

	# Engine events

	def _send_step (self, step: int, tick_time: float) -> None:
		self.send("/step", step)

	def _send_bpm (self, bpm: float) -> None:
		self.send("/bpm", float(bpm))

	def _send_started (self) -> None:
		self.send("/playing", 1)

	def _send_stopped (self) -> None:
		self.send("/playing", 0)
