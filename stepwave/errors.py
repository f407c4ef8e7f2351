"""Exceptions raised by stepwave.

Sample-level failures (``LoadError``) are recovered inside the sample bank by
falling back to a synthetic sample. Everything else propagates to the caller
of the engine operation that failed.
"""

import typing


class StepwaveError (Exception):

	"""Base class for all stepwave errors."""


class InitializationError (StepwaveError):

	"""The audio subsystem could not be created (no device, no permission)."""


class LoadError (StepwaveError):

	"""A sample could not be fetched or decoded."""

	def __init__ (self, name: str, source: str, reason: str) -> None:

		"""Record which sample failed, where from, and why."""

		super().__init__(f"Failed to load sample {name!r} from {source!r}: {reason}")

		self.name = name
		self.source = source
		self.reason = reason


class ValidationError (StepwaveError):

	"""Pattern text failed validation. ``errors`` lists every problem found."""

	def __init__ (self, errors: typing.Sequence[str]) -> None:

		"""Store the validator messages."""

		super().__init__("Validation failed: " + ", ".join(errors))

		self.errors = list(errors)


class EvaluationError (StepwaveError):

	"""Pattern text could not be turned into a playing pattern."""

	def __init__ (self, message: str, errors: typing.Optional[typing.Sequence[str]] = None) -> None:

		"""Store the message and any validator errors that caused it."""

		super().__init__(message)

		self.errors = list(errors) if errors else []


class PlaybackError (StepwaveError):

	"""Transport control was requested before initialisation, or the output refused to start."""
