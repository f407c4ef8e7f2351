import dataclasses
import logging
import typing

import stepwave.constants
import stepwave.pattern


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ParsedToken:

	"""
	Represents a single token parsed from a quoted layer string.
	"""

	symbol: str			# sample name, or "" for a rest
	repeat: int = 1

	@property
	def is_rest (self) -> bool:

		"""True when the token plays nothing."""

		return self.symbol == ""


def tokenize (notation: str) -> typing.List[str]:

	"""
	Split a layer string into whitespace-delimited tokens.
	"""

	return notation.split()


def parse_token (token: str) -> ParsedToken:

	"""
	Interpret one token.

	- ``~`` or ``.``: a rest.
	- ``name*N``: ``name`` repeated N times (see ``expand_repeat``).
	- anything else: a single hit of that sample name.

	A repeat suffix that is not a positive integer (``bd*``, ``bd*x``,
	``bd*0``) degrades to a single hit of the bare name.
	"""

	if token in stepwave.constants.REST_TOKENS:
		return ParsedToken("")

	name, star, count = token.rpartition("*")

	if not star:
		return ParsedToken(token)

	if not name:
		logger.debug(f"Ignoring token without a sample name: {token!r}")
		return ParsedToken("")

	if count.isdigit() and int(count) > 0:
		return ParsedToken(name, int(count))

	logger.debug(f"Ignoring malformed repeat count in {token!r}")
	return ParsedToken(name)


def slot_for (index: int, token_count: int, steps: int = stepwave.constants.STEPS_PER_CYCLE) -> int:

	"""
	Return the grid slot of the token at ``index``.

	Tokens are spread evenly across the cycle, so four tokens land on
	slots 0, 4, 8 and 12. With more tokens than slots each token takes one
	slot, and the caller drops anything that lands past the end.
	"""

	if token_count <= steps:
		return (index * steps) // token_count

	return index


def expand_repeat (start: int, repeat: int, steps: int = stepwave.constants.STEPS_PER_CYCLE) -> typing.List[int]:

	"""
	Return the slots a ``name*N`` token fills when it starts at ``start``.

	The N hits are spread over the remaining capacity of the cycle
	(``steps - start``). Hits that do not fit are dropped; nothing wraps
	around to the start of the cycle.
	"""

	if start >= steps or repeat <= 0:
		return []

	capacity = steps - start

	if repeat >= capacity:
		return list(range(start, steps))

	return [start + (k * capacity) // repeat for k in range(repeat)]


def parse (notation: str, steps: int = stepwave.constants.STEPS_PER_CYCLE) -> typing.Tuple[stepwave.pattern.StepEvent, ...]:

	"""
	Parse a layer string into a fixed-length tuple of step events.

	The result always has exactly ``steps`` entries. Rests and empty slots
	are explicit inactive events.

	Example:
		```python
		# kick on the downbeat only
		parse("bd ~ ~ ~")

		# four kicks spread across the bar: slots 0, 4, 8, 12
		parse("bd*4")
		```
	"""

	if steps <= 0:
		raise ValueError("steps must be positive")

	cells: typing.List[stepwave.pattern.StepEvent] = [stepwave.pattern.REST] * steps
	tokens = tokenize(notation)

	for i, raw in enumerate(tokens):

		token = parse_token(raw)

		if token.is_rest:
			continue

		start = slot_for(i, len(tokens), steps)

		if start >= steps:
			logger.debug(f"Dropping token {raw!r}: past the end of the cycle")
			continue

		if token.repeat > 1:
			slots = expand_repeat(start, token.repeat, steps)
		else:
			slots = [start]

		for slot in slots:
			cells[slot] = stepwave.pattern.StepEvent(active=True, sample_ref=token.symbol)

	return tuple(cells)


def layer_label (notation: str, index: int) -> str:

	"""
	Pick a display name for a layer: its first sample name, or a numbered fallback.
	"""

	for raw in tokenize(notation):

		token = parse_token(raw)

		if not token.is_rest:
			return token.symbol

	return f"layer {index + 1}"
