import numpy
import pytest

import stepwave.effects
import stepwave.pattern


RATE = 8000


def _tone (frequency: float, seconds: float = 0.5) -> numpy.ndarray:

	t = numpy.arange(int(RATE * seconds)) / RATE
	return numpy.sin(2 * numpy.pi * frequency * t).astype(numpy.float32)


def _rms (buffer: numpy.ndarray) -> float:

	return float(numpy.sqrt(numpy.mean(numpy.square(buffer))))


def test_empty_chain_is_identity () -> None:

	"""No effects returns the same audio as float32."""

	tone = _tone(440.0)
	out = stepwave.effects.apply_chain(tone, (), RATE)

	assert out.dtype == numpy.float32
	assert numpy.array_equal(out, tone)


def test_lowpass_attenuates_high_frequencies () -> None:

	"""A low cutoff removes most of a high tone and keeps a low one."""

	lpf = (stepwave.pattern.Effect("lpf", (("frequency", 200.0),)),)

	high = stepwave.effects.apply_chain(_tone(3000.0), lpf, RATE)
	low = stepwave.effects.apply_chain(_tone(50.0), lpf, RATE)

	assert _rms(high) < 0.05
	assert _rms(low) > 0.5


def test_highpass_attenuates_low_frequencies () -> None:

	"""A high cutoff removes most of a low tone."""

	hpf = (stepwave.pattern.Effect("hpf", (("frequency", 2000.0),)),)

	assert _rms(stepwave.effects.apply_chain(_tone(50.0), hpf, RATE)) < 0.05


def test_cutoff_above_nyquist_is_clamped () -> None:

	"""An impossible cutoff does not raise."""

	lpf = (stepwave.pattern.Effect("lpf", (("frequency", 100000.0),)),)

	out = stepwave.effects.apply_chain(_tone(440.0), lpf, RATE)

	assert numpy.all(numpy.isfinite(out))


def test_reverb_adds_tail () -> None:

	"""Reverb makes the buffer longer and is deterministic."""

	tone = _tone(440.0, 0.1)
	reverb = (stepwave.pattern.Effect("reverb", (("room_size", 0.5),)),)

	a = stepwave.effects.apply_chain(tone, reverb, RATE)
	b = stepwave.effects.apply_chain(tone, reverb, RATE)

	assert a.shape[0] > tone.shape[0]
	assert numpy.array_equal(a, b)


def test_reverb_impulse_is_normalised () -> None:

	"""The impulse has unit energy."""

	impulse = stepwave.effects.reverb_impulse(0.8, RATE)

	assert float(numpy.sum(impulse ** 2)) == pytest.approx(1.0)


def test_delay_echoes () -> None:

	"""Delay repeats a click every ``time`` seconds, quieter each time."""

	click = numpy.zeros(10, dtype=numpy.float32)
	click[0] = 1.0

	delay = (stepwave.pattern.Effect("delay", (("time", 0.01), ("feedback", 0.5))),)
	out = stepwave.effects.apply_chain(click, delay, RATE)

	offset = int(0.01 * RATE)

	assert out[0] == pytest.approx(1.0)
	assert out[offset] == pytest.approx(0.5)
	assert out[2 * offset] == pytest.approx(0.25)
	assert out.shape[0] == 10 + offset * 8


def test_long_delay_is_clamped () -> None:

	"""A huge delay time renders at most the maximum delay per echo."""

	click = numpy.zeros(10, dtype=numpy.float32)
	click[0] = 1.0

	delay = (stepwave.pattern.Effect("delay", (("time", 60.0), ("feedback", 0.5))),)
	out = stepwave.effects.apply_chain(click, delay, RATE)

	offset = int(stepwave.effects.MAX_DELAY_SECONDS * RATE)

	assert out.shape[0] == 10 + offset * 8
	assert out[offset] == pytest.approx(0.5)


def test_non_finite_delay_is_ignored () -> None:

	click = numpy.ones(10, dtype=numpy.float32)

	delay = (stepwave.pattern.Effect("delay", (("time", float("inf")), ("feedback", 0.5))),)

	assert numpy.array_equal(stepwave.effects.apply_chain(click, delay, RATE), click)


def test_unknown_effect_is_skipped () -> None:

	"""Unrecognised kinds leave the audio untouched."""

	tone = _tone(440.0, 0.05)

	out = stepwave.effects.apply_chain(tone, (stepwave.pattern.Effect("flanger", ()),), RATE)

	assert numpy.array_equal(out, tone)
