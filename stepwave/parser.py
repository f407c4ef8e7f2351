"""Pattern text to ``Pattern``.

The parser is deliberately tolerant: it extracts what it recognises and
drops everything else. Hard failures are the validator's job
(``stepwave.validator``), so a half-typed line during a performance still
produces something playable.

Recognised text::

    stack("bd ~ ~ ~", "~ ~ sd ~", "hh*8").s(0.7).lpf(800).bpm(128)

- every quoted string becomes one layer (see ``stepwave.mini_notation``)
- ``.s(x)`` / ``.gain(x)``   pattern gain, clamped to [0, 1]
- ``.bpm(n)``                tempo hint
- ``.lpf(f)`` / ``.cutoff(f)``  low-pass filter at ``f`` Hz
- ``.hpf(f)``                high-pass filter at ``f`` Hz
- ``.reverb(r)`` / ``.room(r)``  reverb with room size ``r``
- ``.delay(t)``              feedback delay of ``t`` seconds

``// comments`` outside quoted strings are ignored.
"""

import logging
import re
import typing

import stepwave.constants
import stepwave.mini_notation
import stepwave.pattern


logger = logging.getLogger(__name__)

_QUOTED = re.compile(r'"([^"]*)"')
_CALL = re.compile(r'\.(\w+)\(([^()]*)\)')
_NUMBER = re.compile(r'^\s*(-?\d+(?:\.\d+)?|-?\.\d+)\s*$')

_GAIN_NAMES = ("s", "gain")
_DELAY_FEEDBACK = 0.3


def strip_comments (text: str) -> str:

	"""
	Remove ``//`` line comments that are not inside a quoted string.
	"""

	lines: typing.List[str] = []

	for line in text.splitlines():

		in_quote = False
		cut = len(line)

		for i, char in enumerate(line):

			if char == '"':
				in_quote = not in_quote

			elif not in_quote and line.startswith("//", i):
				cut = i
				break

		lines.append(line[:cut])

	return "\n".join(lines)


def _number (argument: str) -> typing.Optional[float]:

	"""Return the single numeric argument of a call, or None if it is anything else."""

	match = _NUMBER.match(argument)

	if match is None:
		return None

	return float(match.group(1))


def _clamp_unit (value: float) -> float:

	"""Clamp to [0, 1]."""

	return max(0.0, min(1.0, value))


def parse (text: str, steps: int = stepwave.constants.STEPS_PER_CYCLE) -> stepwave.pattern.Pattern:

	"""
	Parse pattern text into an immutable ``Pattern``.

	Never raises for plain text. Parsing the same text twice returns equal
	patterns.

	Parameters:
		text: Pattern source text.
		steps: Grid resolution every layer is quantised to (default 16).

	Returns:
		A ``Pattern`` with one layer per quoted string, in text order.
	"""

	code = strip_comments(text)

	layers: typing.List[stepwave.pattern.Layer] = []

	for index, match in enumerate(_QUOTED.finditer(code)):

		notation = match.group(1)

		layers.append(
			stepwave.pattern.Layer(
				label = stepwave.mini_notation.layer_label(notation, index),
				steps = stepwave.mini_notation.parse(notation, steps)
			)
		)

	# Modifier calls are read with the quoted strings blanked out so text
	# inside a layer can never look like a call.
	calls_text = _QUOTED.sub('""', code)

	gain = stepwave.constants.DEFAULT_PATTERN_GAIN
	tempo: typing.Optional[float] = None
	effects: typing.List[stepwave.pattern.Effect] = []

	for match in _CALL.finditer(calls_text):

		name = match.group(1)
		value = _number(match.group(2))

		if value is None:
			logger.debug(f"Ignoring .{name}() without a single numeric argument")
			continue

		if name in _GAIN_NAMES:
			gain = _clamp_unit(value)

		elif name == "bpm":
			if value > 0:
				tempo = min(value, float(stepwave.constants.MAX_BPM))

		elif name in ("lpf", "cutoff"):
			effects.append(stepwave.pattern.Effect("lpf", (("frequency", value),)))

		elif name == "hpf":
			effects.append(stepwave.pattern.Effect("hpf", (("frequency", value),)))

		elif name in ("reverb", "room"):
			effects.append(stepwave.pattern.Effect("reverb", (("room_size", value),)))

		elif name == "delay":
			effects.append(stepwave.pattern.Effect("delay", (("time", value), ("feedback", _DELAY_FEEDBACK))))

		else:
			logger.debug(f"Ignoring unsupported modifier .{name}()")

	return stepwave.pattern.Pattern(
		layers = tuple(layers),
		steps_per_cycle = steps,
		tempo_hint_bpm = tempo,
		gain = gain,
		effects = tuple(effects),
		source = text
	)
