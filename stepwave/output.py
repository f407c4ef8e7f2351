"""Audio output sinks: the rendering boundary of the engine.

``AudioOutputSink`` mixes triggered voices into blocks of audio on demand and
keeps its own output clock (frames rendered so far). It is used directly for
offline rendering and tests. ``SoundDeviceSink`` drives the same mixer from a
``sounddevice`` output stream callback for realtime playback.

Triggers are fire-and-forget: the scheduler hands a voice over with an
absolute start time on the output clock and the mixer starts it on exactly
that frame.
"""

import collections
import dataclasses
import logging
import threading
import typing

import numpy

import stepwave.constants
import stepwave.effects
import stepwave.errors
import stepwave.pattern
import stepwave.sample_bank


logger = logging.getLogger(__name__)

# Rendered effect chains kept per sink; the least recently used is dropped first.
CHAIN_CACHE_SIZE = 64


@dataclasses.dataclass
class ScheduledVoice:

	"""
	An in-flight triggered sound.
	"""

	sample: stepwave.sample_bank.Sample
	start_time: float
	gain: float
	start_frame: int
	buffer: numpy.ndarray = dataclasses.field(repr=False)
	position: int = 0

	@property
	def finished (self) -> bool:

		"""True once every frame has been mixed."""

		return self.position >= self.buffer.shape[0]


@typing.runtime_checkable
class OutputSink (typing.Protocol):

	"""
	Protocol for objects the scheduler can dispatch triggers to.
	"""

	def trigger (self, name: str, gain: float, at_time: float = 0.0, effects: typing.Sequence[stepwave.pattern.Effect] = ()) -> typing.Optional[typing.Any]:

		"""Start sample ``name`` at ``at_time`` on the output clock (0 = now)."""

		...

	def current_time (self) -> float:

		"""Seconds on the output clock."""

		...

	def set_master_volume (self, volume: float) -> None:

		"""Set the master gain, clamped to [0, 1]."""

		...

	@property
	def master_volume (self) -> float:

		"""The current master gain."""

		...

	@property
	def active_voice_count (self) -> int:

		"""Voices queued or playing."""

		...

	@property
	def latency (self) -> float:

		"""Reported output latency in seconds."""

		...

	def cancel_pending (self) -> int:

		"""Drop voices that have not started yet; return how many."""

		...

	def silence (self) -> None:

		"""Drop every voice immediately."""

		...

	def close (self) -> None:

		"""Release the output."""

		...


def soft_clip (mix: numpy.ndarray) -> numpy.ndarray:

	"""Smooth limiter with unity gain for small signals."""

	return numpy.tanh(mix)


def clamp_volume (volume: float) -> float:

	"""Clamp a master volume to [0, 1]."""

	return max(0.0, min(1.0, float(volume)))


class AudioOutputSink:

	"""
	Mixes voices into audio blocks. The output clock advances only when ``render`` is called.
	"""

	def __init__ (self, bank: stepwave.sample_bank.SampleBank, channels: int = stepwave.constants.DEFAULT_CHANNELS) -> None:

		"""Create a sink that reads samples from ``bank``."""

		if channels not in (1, 2):
			raise ValueError("Only mono or stereo output is supported")

		self.bank = bank
		self.sample_rate = bank.sample_rate
		self.channels = channels

		self._voices: typing.List[ScheduledVoice] = []
		self._lock = threading.Lock()
		self._frame = 0
		self._master_volume = stepwave.constants.DEFAULT_MASTER_VOLUME
		self._chain_cache: "collections.OrderedDict[typing.Tuple[str, typing.Tuple[stepwave.pattern.Effect, ...]], typing.Tuple[stepwave.sample_bank.Sample, numpy.ndarray]]" = collections.OrderedDict()

	def current_time (self) -> float:

		"""Seconds of audio rendered so far."""

		return self._frame / self.sample_rate

	@property
	def frame (self) -> int:

		"""Frames of audio rendered so far."""

		return self._frame

	@property
	def latency (self) -> float:

		"""An offline sink has no device latency."""

		return 0.0

	@property
	def master_volume (self) -> float:

		return self._master_volume

	def set_master_volume (self, volume: float) -> None:

		"""Set the master gain, clamped to [0, 1]."""

		self._master_volume = clamp_volume(volume)

	@property
	def active_voice_count (self) -> int:

		return len(self._voices)

	def _voice_buffer (self, sample: stepwave.sample_bank.Sample, effects: typing.Tuple[stepwave.pattern.Effect, ...]) -> numpy.ndarray:

		"""Return the sample rendered through ``effects``, reusing a cached render when the sample is unchanged."""

		if not effects:
			return sample.buffer

		key = (sample.name, effects)
		cached = self._chain_cache.get(key)

		if cached is not None and cached[0] is sample:
			self._chain_cache.move_to_end(key)
			return cached[1]

		rendered = stepwave.effects.apply_chain(sample.buffer, effects, self.sample_rate)
		self._chain_cache[key] = (sample, rendered)
		self._chain_cache.move_to_end(key)

		while len(self._chain_cache) > CHAIN_CACHE_SIZE:
			self._chain_cache.popitem(last=False)

		return rendered

	def trigger (self, name: str, gain: float, at_time: float = 0.0, effects: typing.Sequence[stepwave.pattern.Effect] = ()) -> typing.Optional[ScheduledVoice]:

		"""
		Queue sample ``name`` to start at ``at_time`` seconds on the output clock.

		A time of 0, or any time already in the past, starts the voice at the
		next rendered frame. An unknown sample name is logged and ignored.
		"""

		sample = self.bank.get(name)

		if sample is None:
			logger.warning(f"No sample named {name!r} - trigger ignored")
			return None

		now = self._frame
		start_frame = now if at_time <= 0 else max(now, int(round(at_time * self.sample_rate)))

		voice = ScheduledVoice(
			sample = sample,
			start_time = start_frame / self.sample_rate,
			gain = max(0.0, float(gain)),
			start_frame = start_frame,
			buffer = self._voice_buffer(sample, tuple(effects))
		)

		with self._lock:
			self._voices.append(voice)

		return voice

	def cancel_pending (self) -> int:

		"""Drop voices whose start frame has not been reached. Playing voices finish naturally."""

		now = self._frame

		with self._lock:
			keep = [voice for voice in self._voices if voice.start_frame < now or voice.position > 0]
			dropped = len(self._voices) - len(keep)
			self._voices = keep

		if dropped:
			logger.debug(f"Cancelled {dropped} pending voices")

		return dropped

	def silence (self) -> None:

		"""Drop every voice, including ones already sounding."""

		with self._lock:
			self._voices = []

	def render (self, frames: int) -> numpy.ndarray:

		"""
		Mix the next ``frames`` frames and advance the output clock.

		Returns a float32 array of shape ``(frames, channels)``.
		"""

		block_start = self._frame
		block_end = block_start + frames
		mix = numpy.zeros(frames, dtype=numpy.float32)

		with self._lock:
			voices = list(self._voices)

		for voice in voices:

			if voice.start_frame >= block_end or voice.finished:
				continue

			offset = max(0, voice.start_frame - block_start)
			count = min(frames - offset, voice.buffer.shape[0] - voice.position)

			mix[offset:offset + count] += voice.buffer[voice.position:voice.position + count] * voice.gain
			voice.position += count

		with self._lock:
			self._voices = [voice for voice in self._voices if not voice.finished]

		self._frame = block_end

		out = soft_clip(mix * self._master_volume).astype(numpy.float32)

		return numpy.repeat(out[:, numpy.newaxis], self.channels, axis=1)

	def close (self) -> None:

		"""Drop all voices."""

		self.silence()


class SoundDeviceSink (AudioOutputSink):

	"""
	Realtime sink: a ``sounddevice`` output stream pulls blocks from the mixer.
	"""

	def __init__ (
		self,
		bank: stepwave.sample_bank.SampleBank,
		channels: int = stepwave.constants.DEFAULT_CHANNELS,
		block_size: int = stepwave.constants.DEFAULT_BLOCK_SIZE,
		device: typing.Optional[typing.Union[int, str]] = None
	) -> None:

		"""Configure the stream. Nothing is opened until ``open()``."""

		super().__init__(bank, channels)

		self.block_size = block_size
		self.device = device
		self._stream: typing.Any = None

	def open (self) -> None:

		"""
		Open and start the output stream.

		Raises ``InitializationError`` if PortAudio is missing or the device
		cannot be opened.
		"""

		if self._stream is not None:
			return

		try:
			import sounddevice

		except OSError as exc:
			# Raised at import time when the PortAudio library is missing.
			raise stepwave.errors.InitializationError(f"Audio output unavailable: {exc}") from exc

		try:
			stream = sounddevice.OutputStream(
				samplerate = self.sample_rate,
				blocksize = self.block_size,
				channels = self.channels,
				dtype = "float32",
				device = self.device,
				callback = self._callback,
				latency = "low"
			)
			stream.start()

		except (sounddevice.PortAudioError, OSError, ValueError) as exc:
			raise stepwave.errors.InitializationError(f"Could not open audio output: {exc}") from exc

		self._stream = stream

		logger.info(f"Audio output open: {self.sample_rate} Hz, {self.channels} ch, block {self.block_size}, latency {self.latency * 1000:.1f} ms")

	def _callback (self, outdata: numpy.ndarray, frames: int, time_info: typing.Any, status: typing.Any) -> None:

		"""Fill the device buffer. Runs on the audio thread."""

		if status:
			logger.debug(f"Audio stream status: {status}")

		outdata[:] = self.render(frames)

	@property
	def latency (self) -> float:

		"""Output latency reported by the stream, in seconds."""

		if self._stream is None:
			return 0.0

		return float(self._stream.latency)

	def close (self) -> None:

		"""Stop and close the stream."""

		super().close()

		if self._stream is not None:
			stream = self._stream
			self._stream = None
			stream.stop()
			stream.close()
			logger.info("Audio output closed")
