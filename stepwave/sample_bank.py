"""Decoded sample storage with deterministic synthetic fallback.

The bank is the only owner of sample buffers. Buffers are marked read-only
and every entry is replaced by a single dict assignment, so readers on the
scheduler or audio thread always see a complete old or new entry.

When a real asset cannot be fetched or decoded the bank synthesises a
stand-in from the sample name, so the engine always makes sound.
"""

import asyncio
import dataclasses
import io
import logging
import pathlib
import typing
import zlib

import numpy
import requests
import scipy.signal
import soundfile

import stepwave.constants
import stepwave.constants.vocabulary
import stepwave.errors


logger = logging.getLogger(__name__)

_FETCH_TIMEOUT_SECONDS = 10.0

_KICK_NAMES = ("bd", "kick", "drum", "tom")
_SNARE_NAMES = ("sd", "sn", "snare", "rim")
_HIHAT_NAMES = ("hh", "hihat", "oh", "cymbal", "crash", "ride")
_CLAP_NAMES = ("cp", "clap")


@dataclasses.dataclass (frozen=True)
class Sample:

	"""
	A playable sound. ``buffer`` is mono float32 at ``sample_rate``.
	"""

	name: str
	buffer: numpy.ndarray = dataclasses.field(repr=False, compare=False)
	sample_rate: int
	synthetic: bool = False

	@property
	def frames (self) -> int:

		"""Length of the buffer in frames."""

		return int(self.buffer.shape[0])

	@property
	def duration_ms (self) -> float:

		"""Length of the buffer in milliseconds."""

		return self.frames * 1000.0 / self.sample_rate


@dataclasses.dataclass (frozen=True)
class LoadOutcome:

	"""
	Result of ``SampleBank.load_or_synthesize``.

	``recovered`` is True when the real asset failed and a synthetic sample
	took its place; ``error`` then holds the original failure.
	"""

	sample: Sample
	recovered: bool = False
	error: typing.Optional[stepwave.errors.LoadError] = None


def _recipe (name: str) -> str:

	"""Pick a synthesis recipe from name heuristics."""

	lowered = name.lower()

	for recipe, names in (("kick", _KICK_NAMES), ("snare", _SNARE_NAMES), ("hihat", _HIHAT_NAMES), ("clap", _CLAP_NAMES)):
		if any(lowered.startswith(prefix) for prefix in names):
			return recipe

	return "tone"


def synthesize (name: str, sample_rate: int = stepwave.constants.DEFAULT_SAMPLE_RATE) -> numpy.ndarray:

	"""
	Generate a short stand-in sound for ``name``.

	The result depends only on ``(name, sample_rate)``: noise is drawn from a
	generator seeded with a CRC of the name, so repeated calls (and repeated
	runs) produce identical buffers.

	Recipes:
		kick-like   60 Hz sine, exp(-10t) decay
		snare-like  white noise, exp(-15t) decay
		hihat-like  white noise, exp(-25t) decay, half level
		clap-like   white noise, exp(-20t) decay
		otherwise   440 Hz sine, exp(-5t) decay
	"""

	if sample_rate <= 0:
		raise ValueError("sample_rate must be positive")

	frames = int(stepwave.constants.SYNTHETIC_DURATION_SECONDS * sample_rate)
	t = numpy.arange(frames, dtype=numpy.float64) / sample_rate
	rng = numpy.random.default_rng(zlib.crc32(name.encode("utf-8")))

	recipe = _recipe(name)

	if recipe == "kick":
		signal = numpy.sin(2 * numpy.pi * 60.0 * t) * numpy.exp(-t * 10.0)

	elif recipe == "snare":
		signal = rng.uniform(-1.0, 1.0, frames) * numpy.exp(-t * 15.0)

	elif recipe == "hihat":
		signal = rng.uniform(-1.0, 1.0, frames) * numpy.exp(-t * 25.0) * 0.5

	elif recipe == "clap":
		signal = rng.uniform(-1.0, 1.0, frames) * numpy.exp(-t * 20.0)

	else:
		signal = numpy.sin(2 * numpy.pi * 440.0 * t) * numpy.exp(-t * 5.0)

	return (signal * stepwave.constants.SYNTHETIC_AMPLITUDE).astype(numpy.float32)


def _freeze (buffer: numpy.ndarray) -> numpy.ndarray:

	"""Return a read-only float32 copy of ``buffer``."""

	frozen = numpy.array(buffer, dtype=numpy.float32, copy=True)
	frozen.setflags(write=False)
	return frozen


def _read_source (source: str) -> bytes:

	"""Fetch raw file bytes from a URL or a local path. Runs in a worker thread."""

	if source.startswith(("http://", "https://")):
		response = requests.get(source, timeout=_FETCH_TIMEOUT_SECONDS)
		response.raise_for_status()
		return response.content

	return pathlib.Path(source).read_bytes()


def _decode (data: bytes, target_rate: int) -> numpy.ndarray:

	"""Decode audio bytes to mono float32 at ``target_rate``."""

	audio, rate = soundfile.read(io.BytesIO(data), dtype="float32", always_2d=True)

	mono = audio.mean(axis=1)

	if rate != target_rate:
		divisor = numpy.gcd(int(rate), int(target_rate))
		mono = scipy.signal.resample_poly(mono, target_rate // divisor, rate // divisor)

	return mono


class SampleBank:

	"""
	Named, decoded samples at a single sample rate.
	"""

	def __init__ (self, sample_rate: int = stepwave.constants.DEFAULT_SAMPLE_RATE) -> None:

		"""Create an empty bank."""

		if sample_rate <= 0:
			raise ValueError("sample_rate must be positive")

		self.sample_rate = sample_rate
		self._samples: typing.Dict[str, Sample] = {}

	def __contains__ (self, name: object) -> bool:

		return name in self._samples

	def __len__ (self) -> int:

		return len(self._samples)

	def get (self, name: str) -> typing.Optional[Sample]:

		"""Return the sample called ``name``, or None."""

		return self._samples.get(name)

	def names (self) -> typing.List[str]:

		"""Return every sample name, in insertion order."""

		return list(self._samples)

	def add (self, name: str, buffer: numpy.ndarray, synthetic: bool = False) -> Sample:

		"""
		Insert or replace a sample from an in-memory mono buffer.
		"""

		if buffer.ndim != 1 or buffer.shape[0] == 0:
			raise ValueError(f"Sample {name!r} needs a non-empty mono buffer")

		sample = Sample(
			name = name,
			buffer = _freeze(buffer),
			sample_rate = self.sample_rate,
			synthetic = synthetic
		)

		self._samples[name] = sample

		return sample

	def add_synthetic (self, name: str) -> Sample:

		"""Insert or replace ``name`` with its synthetic stand-in."""

		return self.add(name, synthesize(name, self.sample_rate), synthetic=True)

	async def load_sample (self, name: str, source: str) -> Sample:

		"""
		Fetch and decode ``source`` (a path or an http(s) URL) into the bank as ``name``.

		Raises ``LoadError`` if the data cannot be read or decoded. The bank is
		unchanged on failure.
		"""

		try:
			data = await asyncio.to_thread(_read_source, source)
			buffer = await asyncio.to_thread(_decode, data, self.sample_rate)

		except (OSError, requests.RequestException, RuntimeError, ValueError) as exc:
			raise stepwave.errors.LoadError(name, source, str(exc)) from exc

		if buffer.shape[0] == 0:
			raise stepwave.errors.LoadError(name, source, "no audio frames")

		sample = self.add(name, buffer)

		logger.info(f"Loaded sample {name!r} ({sample.duration_ms:.0f} ms) from {source}")

		return sample

	async def load_or_synthesize (self, name: str, source: str) -> LoadOutcome:

		"""
		Load ``source`` as ``name``, falling back to a synthetic sample on failure.
		"""

		try:
			sample = await self.load_sample(name, source)

		except stepwave.errors.LoadError as exc:
			logger.warning(f"{exc} - using synthetic fallback")
			return LoadOutcome(self.add_synthetic(name), recovered=True, error=exc)

		return LoadOutcome(sample)

	async def ensure_defaults (self, sources: typing.Optional[typing.Mapping[str, str]] = None) -> typing.List[LoadOutcome]:

		"""
		Make sure every default sample name is playable.

		Names with a configured source are loaded from it; failures and names
		without a source get synthetic samples. Extra configured names beyond
		the defaults are loaded too. Names already in the bank are left alone.

		Returns:
			One ``LoadOutcome`` per sample added.
		"""

		sources = dict(sources or {})
		names = list(stepwave.constants.vocabulary.DEFAULT_SAMPLES)
		names.extend(name for name in sources if name not in names)

		outcomes: typing.List[LoadOutcome] = []

		for name in names:

			if name in self._samples:
				continue

			source = sources.get(name)

			if source is None:
				outcomes.append(LoadOutcome(self.add_synthetic(name)))
			else:
				outcomes.append(await self.load_or_synthesize(name, source))

		recovered = sum(1 for outcome in outcomes if outcome.recovered)

		logger.info(f"Sample bank ready: {len(self._samples)} samples ({recovered} recovered with synthetic fallback)")

		return outcomes
