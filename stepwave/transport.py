import logging
import time
import typing

import stepwave.constants


logger = logging.getLogger(__name__)


def step_duration_for (bpm: float, steps_per_beat: int = stepwave.constants.STEPS_PER_BEAT) -> float:

	"""
	Seconds per grid step: ``60 / bpm / steps_per_beat`` (sixteenth notes by default).
	"""

	if bpm <= 0:
		raise ValueError("BPM must be positive")

	if steps_per_beat <= 0:
		raise ValueError("steps_per_beat must be positive")

	return 60.0 / bpm / steps_per_beat


class TransportClock:

	"""
	The single time authority: converts tempo into a step interval and counts steps.

	Tick times are ideal times computed by accumulating the step duration
	from the origin, not measured wake-up times, so timer jitter never
	accumulates into drift.
	"""

	def __init__ (
		self,
		bpm: float = stepwave.constants.DEFAULT_BPM,
		steps_per_cycle: int = stepwave.constants.STEPS_PER_CYCLE,
		steps_per_beat: int = stepwave.constants.STEPS_PER_BEAT,
		clock: typing.Callable[[], float] = time.perf_counter
	) -> None:

		"""Create a stopped transport at step 0."""

		if steps_per_cycle <= 0:
			raise ValueError("steps_per_cycle must be positive")

		self.steps_per_cycle = steps_per_cycle
		self.steps_per_beat = steps_per_beat
		self._clock = clock

		self.current_step = 0
		self.tick_count = 0
		self.origin = 0.0
		self.last_tick_time = 0.0
		self.next_tick_time = 0.0

		self.bpm = 0.0
		self.step_duration = 0.0

		self.set_bpm(bpm)

	def now (self) -> float:

		"""Current time on the transport's clock, in seconds."""

		return self._clock()

	def set_bpm (self, bpm: float) -> None:

		"""
		Change the tempo without touching the step counter.

		The next tick is re-anchored one new step duration after the last tick.
		"""

		self.step_duration = step_duration_for(bpm, self.steps_per_beat)
		self.bpm = float(bpm)
		self.next_tick_time = self.last_tick_time + self.step_duration

		logger.info(f"BPM set to {self.bpm:.2f} ({self.step_duration * 1000:.1f} ms per step)")

	def reset (self, now: typing.Optional[float] = None) -> None:

		"""Return to step 0 with the origin (the step 0 tick) at ``now``."""

		self.origin = self._clock() if now is None else now
		self.current_step = 0
		self.tick_count = 0
		self.last_tick_time = self.origin
		self.next_tick_time = self.origin + self.step_duration

	def resync (self, now: typing.Optional[float] = None) -> None:

		"""Move the next tick to ``now`` after falling behind, keeping the step counter."""

		self.next_tick_time = self._clock() if now is None else now

	def advance (self) -> int:

		"""
		Move to the next step and return it: ``(current_step + 1) mod steps_per_cycle``.
		"""

		self.current_step = (self.current_step + 1) % self.steps_per_cycle
		self.tick_count += 1
		self.last_tick_time = self.next_tick_time
		self.next_tick_time += self.step_duration

		return self.current_step

	@property
	def cycle (self) -> int:

		"""Number of complete cycles since the last reset."""

		return self.tick_count // self.steps_per_cycle
