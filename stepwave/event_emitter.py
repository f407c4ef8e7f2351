import asyncio
import functools
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named observer hooks for read-only consumers of engine state.

	A failing listener is logged and skipped: observers (displays,
	visualisers, OSC broadcast) must never be able to stop the transport.
	"""

	def __init__ (self) -> None:

		"""
		Initialize an empty event registry.
		"""

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}
		self._tasks: typing.Set[asyncio.Task] = set()


	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		self._listeners.setdefault(event_name, []).append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if callback not in self._listeners.get(event_name, []):
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)

	def listener_count (self, event_name: str) -> int:

		"""Number of callbacks registered for ``event_name``."""

		return len(self._listeners.get(event_name, []))


	def emit_sync (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call listeners without waiting.

		Plain callbacks run immediately. Coroutine callbacks are scheduled as
		tasks on the running loop (and skipped with a warning if there is none).
		"""

		for callback in list(self._listeners.get(event_name, [])):

			if asyncio.iscoroutinefunction(callback):

				try:
					loop = asyncio.get_running_loop()
				except RuntimeError:
					logger.warning(f"No running loop for async {event_name!r} listener {callback!r}")
					continue

				task = loop.create_task(callback(*args, **kwargs))
				self._tasks.add(task)
				task.add_done_callback(functools.partial(self._task_done, event_name))
				continue

			try:
				callback(*args, **kwargs)
			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")


	def _task_done (self, event_name: str, task: asyncio.Task) -> None:

		"""Forget a finished listener task and log its failure."""

		self._tasks.discard(task)

		if task.cancelled():
			return

		exc = task.exception()

		if exc is not None:
			logger.error(f"Async listener for {event_name!r} failed", exc_info=exc)


	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call listeners and await the coroutine ones.
		"""

		tasks: typing.List[typing.Awaitable[typing.Any]] = []

		for callback in list(self._listeners.get(event_name, [])):

			if asyncio.iscoroutinefunction(callback):
				tasks.append(callback(*args, **kwargs))
				continue

			try:
				callback(*args, **kwargs)
			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")

		if tasks:
			results = await asyncio.gather(*tasks, return_exceptions=True)

			for result in results:
				if isinstance(result, Exception):
					logger.error(f"Async listener for {event_name!r} failed: {result!r}")
