"""Boundary between an external pattern generator (an AI service) and the engine.

The generator itself is opaque: any ``async (description, bpm) -> object``
callable. Whatever it returns is checked here and turned into either a
``GeneratedPattern`` or a ``GenerationFailure`` before anything reaches
``Engine.evaluate``.
"""

import dataclasses
import logging
import random
import re
import typing

import stepwave.constants
import stepwave.errors


logger = logging.getLogger(__name__)

UNAVAILABLE = "unavailable"
MALFORMED = "malformed"
REFUSED = "refused"
INVALID = "invalid"

BEAT_STYLES = (
	"energetic house beat with rolling bassline",
	"minimal techno with sparse percussion",
	"funky breakbeat with syncopated rhythms",
	"ambient downtempo with subtle percussion",
	"driving four-on-the-floor dance beat",
	"experimental glitchy rhythm",
	"classic hip-hop boom bap pattern",
	"fast-paced drum and bass breakbeat",
	"relaxed lo-fi hip hop groove",
	"industrial techno with heavy kicks",
	"tribal percussion with organic rhythms",
	"UK garage with shuffled hi-hats",
)

FALLBACK_PATTERNS = (
	'stack(\n  "bd ~ ~ ~",\n  "~ ~ sn ~",\n  "hh hh hh hh"\n).s(0.7)',
	'stack(\n  "bd bd ~ ~",\n  "~ sn ~ sn",\n  "hh ~ hh ~"\n).s(0.6).lpf(2000)',
	'stack(\n  "bd ~ sn ~",\n  "hh hh hh hh",\n  "~ cp ~ ~"\n).s(0.8)',
)

_FENCE = re.compile(r"^\s*```[\w-]*\s*\n(.*?)\n?\s*```\s*$", re.DOTALL)

GeneratorType = typing.Callable[[str, float], typing.Awaitable[typing.Any]]


@dataclasses.dataclass (frozen=True)
class GeneratedPattern:

	"""Pattern text produced by the generator."""

	code: str


@dataclasses.dataclass (frozen=True)
class GenerationFailure:

	"""
	Why generation produced nothing playable.

	``kind`` is one of ``UNAVAILABLE`` (the generator raised), ``MALFORMED``
	(its response had no usable code), ``REFUSED`` (it returned an error) or
	``INVALID`` (the code was rejected by ``evaluate``).
	"""

	kind: str
	message: str
	errors: typing.Tuple[str, ...] = ()


GenerationResult = typing.Union[GeneratedPattern, GenerationFailure]


def strip_code_fence (text: str) -> str:

	"""Remove a surrounding markdown code fence, if there is one."""

	match = _FENCE.match(text)

	if match is None:
		return text.strip()

	return match.group(1).strip()


def coerce_generation_result (raw: typing.Any) -> GenerationResult:

	"""
	Turn an untyped generator response into a tagged result.

	Accepts a string of code, or a mapping with ``code`` (success) or
	``error`` (failure). Anything else is ``MALFORMED``.
	"""

	if isinstance(raw, (GeneratedPattern, GenerationFailure)):
		return raw

	if isinstance(raw, str):
		code = strip_code_fence(raw)

		if not code:
			return GenerationFailure(MALFORMED, "Generator returned empty code")

		return GeneratedPattern(code)

	if isinstance(raw, typing.Mapping):

		code = raw.get("code")

		if isinstance(code, str) and code.strip():
			return GeneratedPattern(strip_code_fence(code))

		error = raw.get("error")

		if error is not None:
			return GenerationFailure(REFUSED, str(error))

	return GenerationFailure(MALFORMED, f"Unexpected generator response of type {type(raw).__name__}")


def random_style (rng: typing.Optional[random.Random] = None) -> str:

	"""Pick a beat description for a "surprise me" request."""

	return (rng or random).choice(BEAT_STYLES)


def fallback_pattern (description: str = "", rng: typing.Optional[random.Random] = None) -> str:

	"""A known-good pattern to offer when generation fails, with the request as a comment."""

	code = (rng or random).choice(FALLBACK_PATTERNS)

	if description:
		return f"// {description}\n{code}"

	return code


async def generate_and_evaluate (
	engine: typing.Any,
	generator: GeneratorType,
	description: str,
	bpm: float = stepwave.constants.DEFAULT_BPM
) -> GenerationResult:

	"""
	Ask ``generator`` for a pattern and, if it returns code, evaluate it on ``engine``.

	Nothing the generator does can raise out of this function: every
	failure comes back as a ``GenerationFailure``.
	"""

	try:
		raw = await generator(description, bpm)

	except Exception as exc:
		logger.warning(f"Pattern generator failed: {exc!r}")
		return GenerationFailure(UNAVAILABLE, str(exc) or type(exc).__name__)

	result = coerce_generation_result(raw)

	if isinstance(result, GenerationFailure):
		logger.warning(f"Pattern generation {result.kind}: {result.message}")
		return result

	try:
		await engine.evaluate(result.code)

	except stepwave.errors.EvaluationError as exc:
		logger.warning(f"Generated pattern rejected: {exc}")
		return GenerationFailure(INVALID, str(exc), tuple(exc.errors))

	logger.info(f"Generated pattern for {description!r} is now playing")

	return result
