import dataclasses
import re
import typing

import stepwave.constants.vocabulary
import stepwave.errors
import stepwave.mini_notation
import stepwave.parser


_QUOTED = re.compile(r'"([^"]*)"')
_CALL_NAME = re.compile(r'\.(\w+)\s*\(')
_OPENING_CALL = re.compile(r'(\w*)\s*$')

_PAIRS = {")": "(", "]": "["}


@dataclasses.dataclass
class ValidationResult:

	"""
	Outcome of validating pattern text. ``is_valid`` is true iff ``errors`` is empty.
	"""

	errors: typing.List[str] = dataclasses.field(default_factory=list)

	@property
	def is_valid (self) -> bool:

		"""True when no problems were found."""

		return not self.errors

	def raise_for_errors (self) -> None:

		"""Raise ``ValidationError`` carrying every message, if there are any."""

		if self.errors:
			raise stepwave.errors.ValidationError(self.errors)


def _blank_quotes (text: str) -> str:

	"""Replace quoted strings with empty quotes so only the surrounding code is checked."""

	return _QUOTED.sub('""', text)


def _check_brackets (code: str) -> typing.List[str]:

	"""Report unbalanced parentheses and square brackets outside quoted strings."""

	errors: typing.List[str] = []
	stack: typing.List[typing.Tuple[str, str]] = []

	for i, char in enumerate(code):

		if char in "([":
			name = _OPENING_CALL.search(code[:i]).group(1) if char == "(" else ""
			stack.append((char, name))

		elif char in ")]":
			if not stack or stack[-1][0] != _PAIRS[char]:
				errors.append(f"Unexpected closing {char!r}")
				continue
			stack.pop()

	for char, name in stack:

		if name:
			errors.append(f"Unclosed '{name}(' call")
		else:
			errors.append(f"Unclosed {char!r}")

	return errors


def _is_malformed_repeat (raw: str) -> bool:

	name, star, count = raw.rpartition("*")

	if not star:
		return False

	return not name or not count.isdigit() or int(count) <= 0


def _check_samples (text: str) -> typing.List[str]:

	"""
	Report every token inside a quoted layer that is not a known sample,
	and every repeat suffix that is not a positive count (``bd*``, ``bd*0``, ``*4``).
	"""

	errors: typing.List[str] = []

	for match in _QUOTED.finditer(text):

		for raw in stepwave.mini_notation.tokenize(match.group(1)):

			if _is_malformed_repeat(raw):
				errors.append(f"Malformed repeat: {raw}")

			token = stepwave.mini_notation.parse_token(raw)

			if token.is_rest:
				continue

			if token.symbol not in stepwave.constants.vocabulary.KNOWN_SAMPLES:
				errors.append(f"Unknown sample: {token.symbol}")

	return errors


def _check_functions (code: str) -> typing.List[str]:

	"""Report every dotted call whose name is not a known function."""

	return [
		f"Unknown function: {name}"
		for name in _CALL_NAME.findall(code)
		if name not in stepwave.constants.vocabulary.KNOWN_FUNCTIONS
	]


def validate (text: str) -> ValidationResult:

	"""
	Check pattern text for syntax and vocabulary errors.

	Runs independently of the parser. The checks are lexical:

	- an odd number of ``"`` characters
	- unclosed or unexpected ``(``/``)`` and ``[``/``]`` outside quotes
	- unknown sample names inside quoted layers (one error per token)
	- unknown ``.function(`` names (one error per call)

	The result is advisory; the engine decides whether errors block evaluation.
	"""

	code = stepwave.parser.strip_comments(text)

	if code.count('"') % 2 != 0:
		# Quote pairing is ambiguous, so the other checks would report noise.
		return ValidationResult(["Unmatched quotes in pattern"])

	outside = _blank_quotes(code)

	errors: typing.List[str] = []
	errors.extend(_check_brackets(outside))
	errors.extend(_check_samples(code))
	errors.extend(_check_functions(outside))

	return ValidationResult(errors)
