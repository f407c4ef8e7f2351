"""Per-voice effect chain rendering.

Effects are applied offline to a voice's buffer when it is triggered, in the
order the pattern lists them. Every effect is deterministic so the same
sample and chain always render the same audio (and can be cached).

- ``lpf`` / ``hpf``: 2nd-order Butterworth, ``frequency`` in Hz
- ``reverb``: convolution with a decaying noise impulse, ``room_size`` 0-1
- ``delay``: feedback echoes, ``time`` in seconds (at most 2), ``feedback`` 0-1
"""

import logging
import typing

import numpy
import scipy.signal

import stepwave.pattern


logger = logging.getLogger(__name__)

_MAX_DELAY_REPEATS = 8
MAX_DELAY_SECONDS = 2.0
_DELAY_FLOOR = 0.001		# -60 dB
_REVERB_SEED = 0x5EED


def _butterworth (buffer: numpy.ndarray, frequency: float, sample_rate: int, btype: str) -> numpy.ndarray:

	"""Filter with a 2nd-order Butterworth section, clamping the cutoff below Nyquist."""

	nyquist = sample_rate / 2.0
	cutoff = min(max(frequency, 10.0), nyquist * 0.99)

	sos = scipy.signal.butter(2, cutoff, btype=btype, fs=sample_rate, output="sos")

	return scipy.signal.sosfilt(sos, buffer)


def reverb_impulse (room_size: float, sample_rate: int, decay_seconds: float = 2.0) -> numpy.ndarray:

	"""
	Build the reverb impulse response: noise shaped by ``(1 - i/n) ** power``.

	Larger rooms decay more slowly (smaller power). The noise is seeded so the
	impulse is identical for the same arguments.
	"""

	room = min(max(room_size, 0.0), 1.0)
	length = max(1, int(sample_rate * decay_seconds * max(room, 0.05)))
	rng = numpy.random.default_rng(_REVERB_SEED)

	envelope = (1.0 - numpy.arange(length) / length) ** (1.0 + (1.0 - room) * 4.0)
	impulse = rng.uniform(-1.0, 1.0, length) * envelope

	return impulse / numpy.sqrt(numpy.sum(impulse ** 2))


def _reverb (buffer: numpy.ndarray, room_size: float, sample_rate: int) -> numpy.ndarray:

	"""Mix the dry signal with its convolution against the reverb impulse."""

	wet = scipy.signal.fftconvolve(buffer, reverb_impulse(room_size, sample_rate))
	mix = min(max(room_size, 0.0), 1.0)

	out = wet * mix
	out[:buffer.shape[0]] += buffer * (1.0 - mix)

	return out


def _delay (buffer: numpy.ndarray, time: float, feedback: float, sample_rate: int) -> numpy.ndarray:

	"""
	Add echoes every ``time`` seconds, each ``feedback`` times quieter, until inaudible.

	The delay time is clamped to ``MAX_DELAY_SECONDS``.
	"""

	if not numpy.isfinite(time):
		return buffer

	if time > MAX_DELAY_SECONDS:
		logger.debug(f"Delay time {time} s clamped to {MAX_DELAY_SECONDS} s")
		time = MAX_DELAY_SECONDS

	offset = int(time * sample_rate)
	feedback = min(max(feedback, 0.0), 0.95)

	if offset <= 0 or feedback <= 0.0:
		return buffer

	repeats = 0
	level = feedback

	while level >= _DELAY_FLOOR and repeats < _MAX_DELAY_REPEATS:
		repeats += 1
		level *= feedback

	out = numpy.zeros(buffer.shape[0] + offset * repeats, dtype=numpy.float64)
	level = 1.0

	for n in range(repeats + 1):
		start = n * offset
		out[start:start + buffer.shape[0]] += buffer * level
		level *= feedback

	return out


def apply_chain (buffer: numpy.ndarray, effects: typing.Sequence[stepwave.pattern.Effect], sample_rate: int) -> numpy.ndarray:

	"""
	Run ``buffer`` through ``effects`` in order and return a new float32 array.

	Reverb and delay lengthen the buffer with their tails. Unknown effect
	kinds are skipped.
	"""

	out = numpy.asarray(buffer, dtype=numpy.float64)

	for effect in effects:

		if effect.kind == "lpf":
			out = _butterworth(out, effect.param("frequency", 1000.0), sample_rate, "lowpass")

		elif effect.kind == "hpf":
			out = _butterworth(out, effect.param("frequency", 100.0), sample_rate, "highpass")

		elif effect.kind == "reverb":
			out = _reverb(out, effect.param("room_size", 0.3), sample_rate)

		elif effect.kind == "delay":
			out = _delay(out, effect.param("time", 0.3), effect.param("feedback", 0.3), sample_rate)

		else:
			logger.debug(f"Skipping unknown effect {effect.kind!r}")

	return out.astype(numpy.float32)
