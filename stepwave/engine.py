"""The engine facade: one object that owns the sample bank, the output sink and the scheduler.

Typical use::

    engine = stepwave.Engine()
    await engine.initialize()
    await engine.evaluate('stack("bd ~ ~ ~", "~ ~ sd ~", "hh hh hh hh").s(0.7)')
    await engine.play()
    ...
    await engine.dispose()

There is no module-level engine; create as many independent instances as
you need (each with its own output).
"""

import logging
import math
import time
import typing

import numpy
import soundfile

import stepwave.config
import stepwave.constants
import stepwave.errors
import stepwave.midi_output
import stepwave.output
import stepwave.parser
import stepwave.pattern
import stepwave.sample_bank
import stepwave.scheduler
import stepwave.validator


logger = logging.getLogger(__name__)

# Longest tail rendered after the last cycle, for reverb and delay to ring out.
_MAX_RENDER_TAIL_SECONDS = 10.0


class Engine:

	"""
	Live-coding engine: evaluate pattern text and play it in a loop.

	Lifecycle: ``initialize()`` once, then any number of ``evaluate()`` /
	``play()`` / ``stop()`` calls, then ``dispose()``. Evaluating while
	playing swaps the pattern in on the next step without interrupting
	the beat.
	"""

	def __init__ (
		self,
		config: typing.Optional[stepwave.config.EngineConfig] = None,
		sink: typing.Optional[stepwave.output.OutputSink] = None,
		bank: typing.Optional[stepwave.sample_bank.SampleBank] = None,
		clock: typing.Callable[[], float] = time.perf_counter
	) -> None:

		"""
		Parameters:
			config: Engine settings (defaults to ``EngineConfig()``).
			sink: Output to use instead of the one ``config.output`` selects.
			bank: Sample bank to share (defaults to a new bank at the config rate).
			clock: Time source for the scheduler.
		"""

		self.config = config if config is not None else stepwave.config.EngineConfig()
		self.bank = bank if bank is not None else stepwave.sample_bank.SampleBank(self.config.sample_rate)

		self._sink = sink
		self._owns_sink = sink is None
		self._clock = clock
		self._scheduler: typing.Optional[stepwave.scheduler.Scheduler] = None
		self._is_initialized = False
		self._active_pattern: typing.Optional[stepwave.pattern.Pattern] = None
		self._master_volume = self.config.master_volume
		self._pending_listeners: typing.List[typing.Tuple[str, typing.Callable[..., typing.Any]]] = []

	# State

	@property
	def is_initialized (self) -> bool:

		return self._is_initialized

	@property
	def is_playing (self) -> bool:

		return self._scheduler is not None and self._scheduler.running

	@property
	def current_step (self) -> int:

		if self._scheduler is None:
			return 0

		return self._scheduler.current_step

	@property
	def master_volume (self) -> float:

		return self._master_volume

	@property
	def active_pattern (self) -> typing.Optional[stepwave.pattern.Pattern]:

		"""The most recently evaluated pattern, or None."""

		return self._active_pattern

	@property
	def bpm (self) -> float:

		"""The tempo the transport is running at."""

		if self._scheduler is None:
			return float(self.config.default_bpm)

		return self._scheduler.bpm

	@property
	def sink (self) -> typing.Optional[stepwave.output.OutputSink]:

		return self._sink

	@property
	def scheduler (self) -> typing.Optional[stepwave.scheduler.Scheduler]:

		return self._scheduler

	@property
	def cpu_usage (self) -> int:

		"""
		Rough load estimate in percent, from the number of active voices and loaded samples.

		This is a heuristic for display, not a measurement.
		"""

		voices = self._sink.active_voice_count if self._sink is not None else 0
		samples = len(self.bank)

		return min(round((voices * 2 + samples * 0.5) * 5), 100)

	@property
	def latency_ms (self) -> int:

		"""
		Estimated output latency in milliseconds: device latency plus one block
		for realtime audio, plus the scheduling margin.
		"""

		if self._sink is None:
			return 0

		latency = self._sink.latency + self.config.schedule_ahead

		if isinstance(self._sink, stepwave.output.SoundDeviceSink):
			latency += self.config.block_size / self.config.sample_rate

		return round(latency * 1000)

	def snapshot (self) -> typing.Dict[str, typing.Any]:

		"""Return the engine state as a plain dict (for status displays and OSC/WebSocket replies)."""

		pattern = self._active_pattern

		return {
			"is_initialized": self._is_initialized,
			"is_playing": self.is_playing,
			"current_step": self.current_step,
			"master_volume": self._master_volume,
			"bpm": self.bpm,
			"pattern": pattern.source if pattern is not None else None,
			"layers": [layer.label for layer in pattern.layers] if pattern is not None else [],
			"cpu_usage": self.cpu_usage,
			"latency_ms": self.latency_ms,
		}

	# Lifecycle

	def _create_sink (self) -> stepwave.output.OutputSink:

		"""Build and open the output selected by ``config.output``."""

		if self.config.output == "offline":
			return stepwave.output.AudioOutputSink(self.bank, channels=self.config.channels)

		if self.config.output == "midi":
			midi_sink = stepwave.midi_output.MidiOutputSink(self.config.midi_device)
			midi_sink.open()
			return midi_sink

		audio_sink = stepwave.output.SoundDeviceSink(
			self.bank,
			channels = self.config.channels,
			block_size = self.config.block_size
		)
		audio_sink.open()

		return audio_sink

	async def initialize (self) -> None:

		"""
		Open the output and make the default samples available.

		Safe to call more than once, including after ``dispose()``. An injected
		sink with an ``open()`` method is reopened, so it can be reused across
		dispose/initialize cycles. Raises ``InitializationError`` if the
		audio (or MIDI) output cannot be opened; the engine stays
		uninitialised and the call is not retried.
		"""

		if self._is_initialized:
			return

		if self._sink is None:
			sink = self._create_sink()

		else:
			sink = self._sink
			reopen = getattr(sink, "open", None)

			if reopen is not None:
				reopen()

		try:
			sink.set_master_volume(self._master_volume)
			outcomes = await self.bank.ensure_defaults(self.config.sample_sources)

		except BaseException:
			if self._owns_sink:
				sink.close()
			raise

		self._sink = sink
		self._scheduler = stepwave.scheduler.Scheduler(
			sink,
			default_bpm = self.config.default_bpm,
			clock = self._clock,
			spin_wait = self.config.spin_wait,
			schedule_ahead = self.config.schedule_ahead
		)

		for event_name, callback in self._pending_listeners:
			self._scheduler.on_event(event_name, callback)

		self._pending_listeners = []
		self._is_initialized = True

		recovered = sum(1 for outcome in outcomes if outcome.recovered)

		logger.info(f"Engine initialised: {len(self.bank)} samples ({recovered} synthetic fallbacks), {self.config.output} output")

	async def dispose (self) -> None:

		"""
		Stop playback and close the output, injected sinks included.

		The engine can be initialised again afterwards; ``initialize()`` reopens
		an injected sink that has an ``open()`` method.
		"""

		if self._scheduler is not None:
			await self._scheduler.stop()

		if self._sink is not None:
			self._sink.close()

		if self._owns_sink:
			self._sink = None

		self._scheduler = None
		self._is_initialized = False

		logger.info("Engine disposed")

	def on_event (self, event_name: str, callback: typing.Callable[..., typing.Any]) -> None:

		"""
		Register a callback for a scheduler event (``start``, ``stop``, ``step``, ``pattern``, ``bpm``).

		Callbacks registered before ``initialize()`` are attached when the
		scheduler is created.
		"""

		if self._scheduler is None:
			self._pending_listeners.append((event_name, callback))
			return

		self._scheduler.on_event(event_name, callback)

	# Patterns

	def _compile (self, text: str, strict: bool) -> stepwave.pattern.Pattern:

		"""Validate and parse ``text``. Invalid text raises in strict mode and is logged otherwise."""

		result = stepwave.validator.validate(text)

		if not result.is_valid:

			if strict:
				raise stepwave.errors.EvaluationError(f"Pattern has {len(result.errors)} error(s): {'; '.join(result.errors)}", result.errors)

			logger.warning(f"Evaluating pattern with errors: {'; '.join(result.errors)}")

		return stepwave.parser.parse(text)

	async def evaluate (self, text: str, strict: typing.Optional[bool] = None) -> stepwave.pattern.Pattern:

		"""
		Turn pattern text into the playing pattern.

		If playback is running the new pattern takes over on the next step.

		Parameters:
			text: Pattern source.
			strict: Reject text that fails validation (defaults to ``config.strict``).

		Raises:
			EvaluationError: Not initialised, or strict and the text is invalid.
				``errors`` holds the validator messages.
		"""

		if not self._is_initialized or self._scheduler is None:
			raise stepwave.errors.EvaluationError("Engine is not initialized")

		pattern = self._compile(text, self.config.strict if strict is None else strict)

		self._scheduler.add_pattern(pattern)
		self._active_pattern = pattern

		logger.info(f"Evaluated pattern: {len(pattern.layers)} layers, gain {pattern.gain:.2f}, {self._scheduler.bpm:.2f} BPM")

		return pattern

	async def load_project (self, project: typing.Mapping[str, typing.Any]) -> stepwave.pattern.Pattern:

		"""
		Evaluate a stored project: a mapping with ``code`` and an optional ``bpm``.

		A project tempo becomes the tempo override.
		"""

		code = project.get("code")

		if not isinstance(code, str):
			raise stepwave.errors.EvaluationError("Project has no code")

		pattern = await self.evaluate(code)

		bpm = project.get("bpm")

		if bpm is not None:
			self.set_bpm(float(bpm))

		return pattern

	# Transport

	def _require_scheduler (self) -> stepwave.scheduler.Scheduler:

		if not self._is_initialized or self._scheduler is None:
			raise stepwave.errors.PlaybackError("Engine is not initialized")

		return self._scheduler

	async def play (self) -> None:

		"""Start looping the current pattern from step 0. Does nothing if already playing."""

		await self._require_scheduler().start()

	async def stop (self) -> None:

		"""Stop playback and drop queued sounds. Sounds already playing ring out."""

		await self._require_scheduler().stop()

	async def emergency_stop (self) -> None:

		"""Stop playback and cut every sound immediately."""

		await self.stop()

		if self._sink is not None:
			self._sink.silence()

		logger.warning("Emergency stop")

	def set_volume (self, percent: float) -> None:

		"""Set the master volume from a 0-100 percentage. Out-of-range values are clamped."""

		self._master_volume = stepwave.output.clamp_volume(percent / 100.0)

		if self._sink is not None:
			self._sink.set_master_volume(self._master_volume)

	def set_bpm (self, bpm: float) -> None:

		"""Override the tempo of the text."""

		self._require_scheduler().set_bpm(bpm)

	def play_sample (self, name: str, gain: float = stepwave.constants.DEFAULT_SAMPLE_GAIN) -> typing.Optional[typing.Any]:

		"""
		Play one sample now, outside the pattern (e.g. a preview click).

		Does nothing before ``initialize()``.
		"""

		if not self._is_initialized or self._sink is None:
			logger.debug(f"play_sample({name!r}) ignored - engine not initialized")
			return None

		return self._sink.trigger(name, gain)

	# Offline

	async def render (self, text: str, path: typing.Optional[str] = None, cycles: int = 1, strict: typing.Optional[bool] = None) -> numpy.ndarray:

		"""
		Render ``cycles`` loops of ``text`` to audio without a device.

		Runs a private scheduler and offline sink, so realtime playback is not
		affected. The tail is rendered until every voice has finished (up to
		``_MAX_RENDER_TAIL_SECONDS``).

		Parameters:
			text: Pattern source.
			path: If given, the audio is also written there (format from the extension).
			cycles: Number of 16-step cycles.
			strict: As for ``evaluate``.

		Returns:
			A float32 array of shape ``(frames, channels)``.
		"""

		if cycles <= 0:
			raise ValueError("cycles must be positive")

		pattern = self._compile(text, self.config.strict if strict is None else strict)

		await self.bank.ensure_defaults(self.config.sample_sources)

		sink = stepwave.output.AudioOutputSink(self.bank, channels=self.config.channels)
		sink.set_master_volume(self._master_volume)

		scheduler = stepwave.scheduler.Scheduler(
			sink,
			default_bpm = self.config.default_bpm,
			steps_per_cycle = pattern.steps_per_cycle,
			clock = lambda: 0.0
		)
		scheduler.add_pattern(pattern)
		scheduler.dispatch_ahead(cycles * pattern.steps_per_cycle)

		sample_rate = self.config.sample_rate
		block_size = self.config.block_size
		body_frames = math.ceil(cycles * pattern.steps_per_cycle * scheduler.transport.step_duration * sample_rate)
		max_frames = body_frames + int(_MAX_RENDER_TAIL_SECONDS * sample_rate)

		blocks: typing.List[numpy.ndarray] = []

		while sink.frame < body_frames or (sink.active_voice_count and sink.frame < max_frames):
			blocks.append(sink.render(block_size))

		audio = numpy.concatenate(blocks, axis=0)

		if path is not None:
			soundfile.write(path, audio, sample_rate)
			logger.info(f"Rendered {cycles} cycle(s) to {path} ({audio.shape[0] / sample_rate:.2f} s)")

		return audio
