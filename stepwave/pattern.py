import dataclasses
import typing

import stepwave.constants


@dataclasses.dataclass (frozen=True)
class StepEvent:

	"""
	One cell of a layer's 16-slot step sequence.
	"""

	active: bool = False
	sample_ref: typing.Optional[str] = None
	gain: typing.Optional[float] = None		# None = inherit Pattern.gain

	def __post_init__ (self) -> None:

		"""Reject active steps that have nothing to play."""

		if self.active and not self.sample_ref:
			raise ValueError("An active step needs a sample_ref")


REST = StepEvent()


@dataclasses.dataclass (frozen=True)
class Effect:

	"""
	An effect descriptor in a pattern's signal chain.
	"""

	kind: str										# 'lpf', 'hpf', 'reverb' or 'delay'
	params: typing.Tuple[typing.Tuple[str, float], ...] = ()

	def param (self, name: str, default: float) -> float:

		"""Return a named parameter, or ``default`` if the effect does not set it."""

		for key, value in self.params:
			if key == name:
				return value

		return default


@dataclasses.dataclass (frozen=True)
class Layer:

	"""
	One voice lane of a pattern. ``steps`` always holds exactly one event per slot.
	"""

	label: str
	steps: typing.Tuple[StepEvent, ...]

	def active_steps (self) -> typing.List[int]:

		"""Return the slot indices that trigger a sound."""

		return [i for i, step in enumerate(self.steps) if step.active]


@dataclasses.dataclass (frozen=True)
class Pattern:

	"""
	The immutable result of evaluating one block of pattern text.

	A new evaluation builds a new ``Pattern`` and the scheduler swaps it in;
	nothing edits a pattern in place.
	"""

	layers: typing.Tuple[Layer, ...] = ()
	steps_per_cycle: int = stepwave.constants.STEPS_PER_CYCLE
	tempo_hint_bpm: typing.Optional[float] = None
	gain: float = stepwave.constants.DEFAULT_PATTERN_GAIN
	effects: typing.Tuple[Effect, ...] = ()
	source: str = dataclasses.field(default="", compare=False)

	def __post_init__ (self) -> None:

		"""Check the fixed-length invariant on every layer."""

		if self.steps_per_cycle <= 0:
			raise ValueError("steps_per_cycle must be positive")

		if not 0.0 <= self.gain <= 1.0:
			raise ValueError("Pattern gain must be within [0, 1]")

		if self.tempo_hint_bpm is not None and self.tempo_hint_bpm <= 0:
			raise ValueError("Tempo hint must be positive")

		for layer in self.layers:
			if len(layer.steps) != self.steps_per_cycle:
				raise ValueError(f"Layer {layer.label!r} has {len(layer.steps)} steps, expected {self.steps_per_cycle}")

	@property
	def bpm (self) -> float:

		"""The tempo this pattern asks for, falling back to the default."""

		if self.tempo_hint_bpm is None:
			return float(stepwave.constants.DEFAULT_BPM)

		return float(self.tempo_hint_bpm)

	def events_at (self, step: int) -> typing.List[typing.Tuple[str, float]]:

		"""
		Return ``(sample_ref, gain)`` for every layer that fires at ``step``.

		Layers are returned in stacking order. A step's own gain wins over the
		pattern gain.
		"""

		index = step % self.steps_per_cycle
		due: typing.List[typing.Tuple[str, float]] = []

		for layer in self.layers:

			event = layer.steps[index]

			if not event.active or event.sample_ref is None:
				continue

			gain = event.gain if event.gain is not None else self.gain
			due.append((event.sample_ref, gain))

		return due

	def sample_names (self) -> typing.Set[str]:

		"""Return every sample name this pattern can trigger."""

		return {
			event.sample_ref
			for layer in self.layers
			for event in layer.steps
			if event.active and event.sample_ref is not None
		}


EMPTY_PATTERN = Pattern()
