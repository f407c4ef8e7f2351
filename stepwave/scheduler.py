import asyncio
import logging
import time
import typing

import stepwave.constants
import stepwave.event_emitter
import stepwave.output
import stepwave.pattern
import stepwave.transport


logger = logging.getLogger(__name__)


class Scheduler:

	"""
	Owns the transport and the active pattern set, and dispatches due steps.

	Two states: stopped and running. Starting always begins on step 0 and
	stopping always returns to step 0. Installing a pattern while running
	swaps it in without touching the step counter; the next tick simply
	reads the new pattern.

	Events (see ``on_event``):
		``start``, ``stop``
		``step`` (step, tick_time) after each step's triggers are dispatched
		``pattern`` (pattern_id, pattern) when a pattern is installed
		``bpm`` (bpm) when the effective tempo changes
	"""

	def __init__ (
		self,
		sink: stepwave.output.OutputSink,
		default_bpm: float = stepwave.constants.DEFAULT_BPM,
		steps_per_cycle: int = stepwave.constants.STEPS_PER_CYCLE,
		clock: typing.Callable[[], float] = time.perf_counter,
		spin_wait: bool = True,
		schedule_ahead: float = 0.0
	) -> None:

		"""
		Parameters:
			sink: Where triggers go.
			default_bpm: Tempo when neither an override nor a pattern tempo is set.
			steps_per_cycle: Grid length every pattern is read against.
			clock: Monotonic time source in seconds.
			spin_wait: Busy-wait the final millisecond before each tick for
				tighter timing, at the cost of a little CPU.
			schedule_ahead: Seconds added to every trigger's output time. A
				small margin lets the output start voices sample-accurately
				even when the timer wakes a little late.
		"""

		if default_bpm <= 0:
			raise ValueError("default_bpm must be positive")

		if schedule_ahead < 0:
			raise ValueError("schedule_ahead cannot be negative")

		self.sink = sink
		self.default_bpm = float(default_bpm)
		self.schedule_ahead = schedule_ahead
		self.transport = stepwave.transport.TransportClock(default_bpm, steps_per_cycle, clock=clock)
		self.events = stepwave.event_emitter.EventEmitter()

		self.running = False
		self.task: typing.Optional[asyncio.Task] = None

		self._clock = clock
		self._patterns: typing.Dict[str, stepwave.pattern.Pattern] = {}
		self._tempo_hint: typing.Optional[float] = None
		self._bpm_override: typing.Optional[float] = None
		self._spin_wait = spin_wait
		self._spin_threshold = 0.001
		self._wake = asyncio.Event()

	@property
	def patterns (self) -> typing.Dict[str, stepwave.pattern.Pattern]:

		"""A copy of the active pattern set."""

		return dict(self._patterns)

	@property
	def current_step (self) -> int:

		return self.transport.current_step

	@property
	def bpm (self) -> float:

		return self.transport.bpm

	def effective_bpm (self) -> float:

		"""Override if set, else the latest pattern's tempo hint, else the default."""

		if self._bpm_override is not None:
			return self._bpm_override

		if self._tempo_hint is not None:
			return self._tempo_hint

		return self.default_bpm

	def on_event (self, event_name: str, callback: typing.Callable[..., typing.Any]) -> None:

		"""
		Register a callback for a named event.
		"""

		self.events.on(event_name, callback)

	def add_pattern (self, pattern: stepwave.pattern.Pattern, pattern_id: str = "main") -> None:

		"""
		Install ``pattern`` under ``pattern_id``, replacing any pattern already there.

		The active set is rebuilt and swapped in with one assignment, so a tick
		sees either the old set or the new one, never a mix.
		"""

		patterns = dict(self._patterns)
		patterns[pattern_id] = pattern
		self._patterns = patterns

		self._tempo_hint = pattern.tempo_hint_bpm
		self._apply_tempo()

		logger.debug(f"Installed pattern {pattern_id!r}: {len(pattern.layers)} layers, gain {pattern.gain:.2f}")

		self.events.emit_sync("pattern", pattern_id, pattern)

	def remove_pattern (self, pattern_id: str) -> bool:

		"""Remove a pattern. Returns False if there was none under that id."""

		if pattern_id not in self._patterns:
			return False

		patterns = dict(self._patterns)
		del patterns[pattern_id]
		self._patterns = patterns

		return True

	def set_bpm (self, bpm: float) -> None:

		"""
		Override the tempo of every pattern until ``clear_bpm_override``.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		self._bpm_override = float(bpm)
		self._apply_tempo()

	def clear_bpm_override (self) -> None:

		"""Go back to following the pattern's tempo hint."""

		self._bpm_override = None
		self._apply_tempo()

	def _apply_tempo (self) -> None:

		"""Push the effective tempo into the transport and wake the loop to re-anchor the next tick."""

		bpm = self.effective_bpm()

		if bpm == self.transport.bpm:
			return

		self.transport.set_bpm(bpm)
		self._wake.set()
		self.events.emit_sync("bpm", bpm)

	async def start (self) -> None:

		"""
		Start playback from step 0. Does nothing if already running.

		Step 0 is dispatched immediately; the tick loop takes over from step 1.
		"""

		if self.running:
			return

		self.transport.reset(self._clock())
		self.running = True

		self._dispatch_step(self.transport.current_step, self.transport.last_tick_time)

		self._wake = asyncio.Event()
		self.task = asyncio.create_task(self._run_loop())

		logger.info(f"Scheduler started at {self.transport.bpm:.2f} BPM")

		await self.events.emit_async("start")

	async def stop (self) -> None:

		"""
		Stop playback: cancel the tick task and pending voices, reset to step 0.

		Voices already sounding finish naturally.
		"""

		was_running = self.running
		self.running = False

		task = self.task
		self.task = None

		try:
			if task is not None and not task.done():
				task.cancel()
				try:
					await task
				except asyncio.CancelledError:
					pass

		finally:
			self.sink.cancel_pending()
			self.transport.reset(self._clock())

		if was_running:
			logger.info("Scheduler stopped")
			await self.events.emit_async("stop")

	async def _run_loop (self) -> None:

		"""Tick loop. Sleeps until each ideal tick time, then dispatches every tick that is due."""

		try:

			while self.running:

				await self._wait_for_next_tick()

				self._resync_if_stalled()

				while self.running and self._clock() >= self.transport.next_tick_time:
					self._tick()

		except asyncio.CancelledError:
			raise

		except Exception:
			logger.exception("Scheduler loop failed - stopping")
			self.running = False

	def _resync_if_stalled (self) -> bool:

		"""
		Skip ahead when the loop has fallen more than one cycle (at the current tempo) behind.

		Returns True if the transport was resynced.
		"""

		now = self._clock()
		lag = now - self.transport.next_tick_time

		if lag <= self.transport.step_duration * self.transport.steps_per_cycle:
			return False

		logger.warning(f"Scheduler fell {lag:.3f}s behind - skipping missed steps")
		self.transport.resync(now)

		return True

	async def _wait_for_next_tick (self) -> None:

		"""
		Wait until the next tick is due, or until the tempo changes.

		Sleeps to within the spin threshold of the target, then busy-waits the
		remainder. A tempo change sets ``_wake`` so the loop re-reads the target.
		"""

		target = self.transport.next_tick_time
		remaining = target - self._clock()
		margin = self._spin_threshold if self._spin_wait else 0.0

		if remaining > margin:

			self._wake.clear()

			try:
				await asyncio.wait_for(self._wake.wait(), timeout=remaining - margin)
			except asyncio.TimeoutError:
				pass

			return

		if self._spin_wait:
			while self._clock() < target:
				pass
		else:
			await asyncio.sleep(0)

	def dispatch_ahead (self, steps: int) -> int:

		"""
		Dispatch ``steps`` steps from step 0 at once, each stamped with its ideal output time.

		Used for offline rendering: the sink receives the whole timeline up
		front and is rendered afterwards. Needs a clock that does not move
		during the call. Returns the number of triggers sent.
		"""

		if self.running:
			raise RuntimeError("Cannot dispatch ahead while the scheduler is running")

		origin = self._clock()
		self.transport.reset(origin)

		sent = len(self._dispatch_step(0, origin))

		for _ in range(steps - 1):
			step = self.transport.advance()
			sent += len(self._dispatch_step(step, self.transport.last_tick_time))

		self.transport.reset(origin)

		return sent

	def _tick (self) -> None:

		"""Advance one step and dispatch it."""

		step = self.transport.advance()
		self._dispatch_step(step, self.transport.last_tick_time)

	def _output_time (self, tick_time: float) -> float:

		"""Map an ideal tick time on the transport clock to the sink's output clock."""

		return max(0.0, self.sink.current_time() + (tick_time - self._clock()) + self.schedule_ahead)

	def _dispatch_step (self, step: int, tick_time: float) -> typing.List[typing.Tuple[str, float]]:

		"""
		Trigger every active event at ``step`` across all active patterns.

		The due list is collected before anything is sent, and a failing
		trigger is logged without affecting the others in the same step.
		"""

		patterns = self._patterns
		due: typing.List[typing.Tuple[str, float, typing.Tuple[stepwave.pattern.Effect, ...]]] = []

		for pattern in patterns.values():
			for name, gain in pattern.events_at(step):
				due.append((name, gain, pattern.effects))

		at_time = self._output_time(tick_time)

		for name, gain, effects in due:
			try:
				self.sink.trigger(name, gain, at_time, effects)
			except Exception:
				logger.exception(f"Trigger for {name!r} failed at step {step}")

		self.events.emit_sync("step", step, tick_time)

		return [(name, gain) for name, gain, _ in due]
