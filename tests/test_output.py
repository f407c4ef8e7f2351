import sys
import types
import typing

import numpy
import pytest

import stepwave.errors
import stepwave.output
import stepwave.pattern
import stepwave.sample_bank


RATE = 8000


@pytest.fixture
def click_bank () -> stepwave.sample_bank.SampleBank:

	"""A bank with a 4-frame click and a 1000-frame tone."""

	bank = stepwave.sample_bank.SampleBank(RATE)
	bank.add("click", numpy.array([0.5, 0.0, 0.0, 0.0]))
	bank.add("tone", numpy.full(1000, 0.1))

	return bank


@pytest.fixture
def output (click_bank: stepwave.sample_bank.SampleBank) -> stepwave.output.AudioOutputSink:

	sink = stepwave.output.AudioOutputSink(click_bank, channels=2)
	sink.set_master_volume(1.0)

	return sink


def test_sinks_satisfy_protocol (output: stepwave.output.AudioOutputSink) -> None:

	"""The offline sink implements the OutputSink protocol."""

	assert isinstance(output, stepwave.output.OutputSink)


def test_render_shape_and_clock (output: stepwave.output.AudioOutputSink) -> None:

	"""render() returns (frames, channels) float32 and advances the output clock."""

	block = output.render(64)

	assert block.shape == (64, 2)
	assert block.dtype == numpy.float32
	assert output.frame == 64
	assert output.current_time() == pytest.approx(64 / RATE)


def test_trigger_now_starts_on_next_frame (output: stepwave.output.AudioOutputSink) -> None:

	"""A trigger at time 0 sounds at the start of the next block."""

	output.trigger("click", 1.0)
	block = output.render(8)

	assert block[0, 0] == pytest.approx(numpy.tanh(0.5))
	assert block[0, 1] == block[0, 0]
	assert numpy.all(block[1:] == 0.0)


def test_trigger_is_sample_accurate_mid_block (output: stepwave.output.AudioOutputSink) -> None:

	"""A voice scheduled inside a block starts on its exact frame."""

	output.trigger("click", 1.0, at_time=37 / RATE)
	block = output.render(64)

	nonzero = numpy.nonzero(block[:, 0])[0]

	assert list(nonzero) == [37]


def test_voice_spanning_blocks (output: stepwave.output.AudioOutputSink) -> None:

	"""A voice that runs past the block end continues in the next block."""

	output.trigger("tone", 1.0, at_time=60 / RATE)

	first = output.render(64)
	second = output.render(64)

	assert numpy.count_nonzero(first[:, 0]) == 4
	assert numpy.count_nonzero(second[:, 0]) == 64


def test_gain_and_master_volume (output: stepwave.output.AudioOutputSink) -> None:

	"""Voice gain and master volume multiply before the soft clip."""

	output.set_master_volume(0.5)
	output.trigger("click", 0.5)

	block = output.render(4)

	assert block[0, 0] == pytest.approx(numpy.tanh(0.5 * 0.5 * 0.5))


def test_master_volume_is_clamped (output: stepwave.output.AudioOutputSink) -> None:

	"""Volumes outside [0, 1] are clamped."""

	output.set_master_volume(3.0)
	assert output.master_volume == 1.0

	output.set_master_volume(-1.0)
	assert output.master_volume == 0.0


def test_soft_clip_limits_loud_mix (output: stepwave.output.AudioOutputSink) -> None:

	"""Many overlapping voices never exceed full scale."""

	for _ in range(20):
		output.trigger("click", 1.0)

	block = output.render(4)

	assert numpy.max(numpy.abs(block)) <= 1.0


def test_soft_clip_compresses_overs (output: stepwave.output.AudioOutputSink) -> None:

	"""A mix of 2.0 comes out as tanh(2.0), below full scale."""

	for _ in range(4):
		output.trigger("click", 1.0)

	block = output.render(4)

	assert block[0, 0] == pytest.approx(numpy.tanh(2.0), abs=1e-6)
	assert block[0, 0] < 1.0


def test_unknown_sample_is_ignored (output: stepwave.output.AudioOutputSink) -> None:

	"""Triggering a name the bank does not have is a no-op."""

	assert output.trigger("nope", 1.0) is None
	assert output.active_voice_count == 0


def test_finished_voices_are_released (output: stepwave.output.AudioOutputSink) -> None:

	"""Voices are removed once fully rendered."""

	output.trigger("click", 1.0)
	assert output.active_voice_count == 1

	output.render(8)
	assert output.active_voice_count == 0


def test_cancel_pending_keeps_playing_voices (output: stepwave.output.AudioOutputSink) -> None:

	"""cancel_pending() drops future voices but lets sounding ones finish."""

	output.trigger("tone", 1.0)
	output.render(16)

	output.trigger("click", 1.0, at_time=1.0)

	assert output.cancel_pending() == 1
	assert output.active_voice_count == 1

	block = output.render(16)
	assert numpy.count_nonzero(block[:, 0]) == 16


def test_silence_drops_everything (output: stepwave.output.AudioOutputSink) -> None:

	"""silence() cuts sounding voices too."""

	output.trigger("tone", 1.0)
	output.render(16)
	output.silence()

	assert output.active_voice_count == 0
	assert numpy.all(output.render(16) == 0.0)


def test_effect_chain_is_cached (output: stepwave.output.AudioOutputSink) -> None:

	"""The same sample and chain reuse one rendered buffer."""

	effects = (stepwave.pattern.Effect("delay", (("time", 0.01), ("feedback", 0.5))),)

	a = output.trigger("click", 1.0, effects=effects)
	b = output.trigger("click", 1.0, effects=effects)

	assert a is not None and b is not None
	assert a.buffer is b.buffer
	assert a.buffer.shape[0] > 4


def test_effect_chain_cache_is_bounded (output: stepwave.output.AudioOutputSink) -> None:

	"""Sweeping a filter keeps only the most recent chains."""

	def _lpf (frequency: float) -> tuple:
		return (stepwave.pattern.Effect("lpf", (("frequency", frequency),)),)

	first = output.trigger("tone", 1.0, effects=_lpf(100.0))

	for step in range(stepwave.output.CHAIN_CACHE_SIZE + 50):
		output.trigger("tone", 1.0, effects=_lpf(200.0 + step))

	assert len(output._chain_cache) == stepwave.output.CHAIN_CACHE_SIZE

	again = output.trigger("tone", 1.0, effects=_lpf(100.0))

	assert first is not None and again is not None
	assert again.buffer is not first.buffer
	assert numpy.array_equal(again.buffer, first.buffer)


def test_recently_used_chain_survives (output: stepwave.output.AudioOutputSink) -> None:

	"""A chain that keeps playing is not evicted by newer ones."""

	kept = (stepwave.pattern.Effect("lpf", (("frequency", 500.0),)),)
	first = output.trigger("tone", 1.0, effects=kept)

	for step in range(stepwave.output.CHAIN_CACHE_SIZE * 2):
		output.trigger("tone", 1.0, effects=(stepwave.pattern.Effect("hpf", (("frequency", 50.0 + step),)),))
		output.trigger("tone", 1.0, effects=kept)

	again = output.trigger("tone", 1.0, effects=kept)

	assert first is not None and again is not None
	assert again.buffer is first.buffer


def test_mono_output (click_bank: stepwave.sample_bank.SampleBank) -> None:

	"""A mono sink renders one channel."""

	sink = stepwave.output.AudioOutputSink(click_bank, channels=1)

	assert sink.render(8).shape == (8, 1)


def test_sounddevice_failure_is_initialization_error (click_bank: stepwave.sample_bank.SampleBank, monkeypatch: pytest.MonkeyPatch) -> None:

	"""A device that cannot be opened raises InitializationError."""

	class FakePortAudioError (Exception):
		pass

	def _broken_stream (*args: typing.Any, **kwargs: typing.Any) -> None:
		raise FakePortAudioError("no device")

	fake = types.SimpleNamespace(OutputStream=_broken_stream, PortAudioError=FakePortAudioError)
	monkeypatch.setitem(sys.modules, "sounddevice", fake)

	sink = stepwave.output.SoundDeviceSink(click_bank)

	with pytest.raises(stepwave.errors.InitializationError):
		sink.open()
