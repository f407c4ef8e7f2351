import typing

import mido
import pytest

import stepwave.config
import stepwave.constants.vocabulary
import stepwave.engine
import stepwave.sample_bank


# Low rate keeps synthesis and rendering fast in tests.
TEST_SAMPLE_RATE = 8000


class FakeClock:

	"""Controllable monotonic clock. Call it to read the time, set ``now`` to move it."""

	def __init__ (self, start: float = 0.0) -> None:

		self.now = start

	def __call__ (self) -> float:

		return self.now

	def advance (self, seconds: float) -> None:

		"""Move time forward."""

		self.now += seconds


class RecordingSink:

	"""Output sink stub that records every trigger instead of making sound."""

	def __init__ (self, clock: typing.Optional[typing.Callable[[], float]] = None, known: typing.Optional[typing.Iterable[str]] = None) -> None:

		"""Optionally read output time from ``clock`` and only accept names in ``known``."""

		self.clock = clock
		self.known = set(known) if known is not None else None
		self.triggers: typing.List[typing.Tuple[str, float, float, tuple]] = []
		self.failing: typing.Set[str] = set()
		self.cancel_calls = 0
		self.silenced = False
		self.closed = False
		self.latency = 0.0
		self._master_volume = 1.0

	def trigger (self, name: str, gain: float, at_time: float = 0.0, effects: typing.Sequence[typing.Any] = ()) -> typing.Optional[str]:

		"""Record the trigger. Names in ``failing`` raise to simulate a broken output."""

		if name in self.failing:
			raise RuntimeError(f"cannot play {name}")

		if self.known is not None and name not in self.known:
			return None

		self.triggers.append((name, gain, at_time, tuple(effects)))

		return name

	def current_time (self) -> float:

		return self.clock() if self.clock is not None else 0.0

	def set_master_volume (self, volume: float) -> None:

		self._master_volume = max(0.0, min(1.0, volume))

	@property
	def master_volume (self) -> float:

		return self._master_volume

	@property
	def active_voice_count (self) -> int:

		return len(self.triggers)

	def cancel_pending (self) -> int:

		self.cancel_calls += 1
		return 0

	def silence (self) -> None:

		self.silenced = True

	def close (self) -> None:

		self.closed = True

	def names (self) -> typing.List[str]:

		"""Names of every recorded trigger, in order."""

		return [trigger[0] for trigger in self.triggers]


class FakeMidiOut:

	"""MIDI output stub that keeps every message sent."""

	def __init__ (self) -> None:

		self.messages: typing.List[mido.Message] = []
		self.panicked = False
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Record outgoing MIDI messages."""

		self.messages.append(message)

	def close (self) -> None:

		self.closed = True

	def panic (self) -> None:

		self.panicked = True


# Module-level reference so tests can inspect the most recently opened FakeMidiOut.
_current_fake_output: typing.Optional[FakeMidiOut] = None


def _fake_get_output_names () -> typing.List[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	global _current_fake_output
	_current_fake_output = FakeMidiOut()
	return _current_fake_output


def current_fake_output () -> typing.Optional[FakeMidiOut]:

	"""The FakeMidiOut opened most recently."""

	return _current_fake_output


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI output."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def clock () -> FakeClock:

	return FakeClock()


@pytest.fixture
def sink (clock: FakeClock) -> RecordingSink:

	return RecordingSink(clock)


@pytest.fixture
def bank () -> stepwave.sample_bank.SampleBank:

	"""A bank with every default name synthesised."""

	bank = stepwave.sample_bank.SampleBank(TEST_SAMPLE_RATE)

	for name in stepwave.constants.vocabulary.DEFAULT_SAMPLES:
		bank.add_synthetic(name)

	return bank


@pytest.fixture
def config () -> stepwave.config.EngineConfig:

	"""Offline config at the test sample rate, without busy-waiting."""

	return stepwave.config.EngineConfig(
		sample_rate = TEST_SAMPLE_RATE,
		block_size = 64,
		output = "offline",
		spin_wait = False
	)


@pytest.fixture
def engine (config: stepwave.config.EngineConfig, sink: RecordingSink, bank: stepwave.sample_bank.SampleBank, clock: FakeClock) -> stepwave.engine.Engine:

	"""An engine wired to the recording sink and the fake clock. Not yet initialised."""

	return stepwave.engine.Engine(config, sink=sink, bank=bank, clock=clock)
