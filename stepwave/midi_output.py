"""MIDI output sink: play patterns on an external drum machine or DAW.

Sample triggers become General MIDI drum notes (see
``stepwave.constants.gm_drums``) sent through mido. Triggers in the future
are held on the asyncio event loop until their time; ``cancel_pending``
drops the ones that have not been sent yet.
"""

import asyncio
import logging
import time
import typing

import mido

import stepwave.constants.gm_drums
import stepwave.errors
import stepwave.output
import stepwave.pattern


logger = logging.getLogger(__name__)


def open_output_port (device_name: typing.Optional[str] = None) -> typing.Tuple[str, typing.Any]:

	"""
	Open a MIDI output port.

	If ``device_name`` is given it must exist. Otherwise the first available
	port is used (with a warning if there was more than one to choose from).

	Raises ``InitializationError`` when no suitable port can be opened.
	"""

	try:
		outputs = mido.get_output_names()
	except Exception as exc:
		raise stepwave.errors.InitializationError(f"MIDI backend unavailable: {exc}") from exc

	logger.info(f"Available MIDI outputs: {outputs}")

	if not outputs:
		raise stepwave.errors.InitializationError("No MIDI output devices found")

	if device_name is not None:
		if device_name not in outputs:
			raise stepwave.errors.InitializationError(f"MIDI output device {device_name!r} not found. Available devices: {outputs}")
		selected = device_name

	else:
		selected = outputs[0]
		if len(outputs) > 1:
			logger.warning(f"Several MIDI outputs found - using {selected!r}. Set midi_device in the config to choose.")

	try:
		port = mido.open_output(selected)
	except Exception as exc:
		raise stepwave.errors.InitializationError(f"Could not open MIDI output {selected!r}: {exc}") from exc

	logger.info(f"Opened MIDI output: {selected}")

	return selected, port


class MidiOutputSink:

	"""
	Sends sample triggers as note messages on the GM drum channel.
	"""

	def __init__ (
		self,
		device_name: typing.Optional[str] = None,
		note_map: typing.Optional[typing.Mapping[str, int]] = None,
		channel: int = stepwave.constants.gm_drums.GM_DRUM_CHANNEL,
		note_length: float = 0.1,
		clock: typing.Callable[[], float] = time.perf_counter
	) -> None:

		"""Configure the sink. The port is opened by ``open()``."""

		self.device_name = device_name
		self.note_map = dict(note_map if note_map is not None else stepwave.constants.gm_drums.GM_SAMPLE_MAP)
		self.channel = channel
		self.note_length = note_length

		self._clock = clock
		self._origin = clock()
		self._port: typing.Any = None
		self._master_volume = 1.0
		self._pending: typing.Set[asyncio.TimerHandle] = set()
		self._note_offs: typing.Set[asyncio.TimerHandle] = set()

	def open (self) -> None:

		"""Open the MIDI port."""

		if self._port is None:
			self.device_name, self._port = open_output_port(self.device_name)

	def current_time (self) -> float:

		return self._clock() - self._origin

	@property
	def latency (self) -> float:

		return 0.0

	@property
	def master_volume (self) -> float:

		return self._master_volume

	def set_master_volume (self, volume: float) -> None:

		"""Scale outgoing velocities by ``volume``, clamped to [0, 1]."""

		self._master_volume = stepwave.output.clamp_volume(volume)

	@property
	def active_voice_count (self) -> int:

		return len(self._pending) + len(self._note_offs)

	def _send (self, message: mido.Message) -> None:

		"""Send one message, logging (not raising) device failures."""

		if self._port is None:
			return

		try:
			self._port.send(message)
		except Exception:
			logger.exception("MIDI send failed (device may be disconnected)")

	def _note_on (self, note: int, velocity: int, handle_box: typing.List[asyncio.TimerHandle]) -> None:

		"""Send a note on and schedule its note off."""

		if handle_box:
			self._pending.discard(handle_box[0])

		self._send(mido.Message("note_on", channel=self.channel, note=note, velocity=velocity))

		loop = asyncio.get_running_loop()
		off_box: typing.List[asyncio.TimerHandle] = []
		off = loop.call_later(self.note_length, self._note_off, note, off_box)
		off_box.append(off)
		self._note_offs.add(off)

	def _note_off (self, note: int, handle_box: typing.List[asyncio.TimerHandle]) -> None:

		if handle_box:
			self._note_offs.discard(handle_box[0])

		self._send(mido.Message("note_off", channel=self.channel, note=note, velocity=0))

	def trigger (self, name: str, gain: float, at_time: float = 0.0, effects: typing.Sequence[stepwave.pattern.Effect] = ()) -> typing.Optional[int]:

		"""
		Play the drum note mapped to ``name`` at ``at_time`` (0 = now).

		Effects cannot be expressed over MIDI and are ignored. Returns the
		note number, or None when ``name`` has no mapping.
		"""

		note = self.note_map.get(name)

		if note is None:
			logger.warning(f"No MIDI note mapped for sample {name!r} - trigger ignored")
			return None

		velocity = max(1, min(127, int(round(stepwave.output.clamp_volume(gain) * self._master_volume * 127))))
		delay = at_time - self.current_time() if at_time > 0 else 0.0

		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			# No event loop to time the note off; send both now.
			self._send(mido.Message("note_on", channel=self.channel, note=note, velocity=velocity))
			self._send(mido.Message("note_off", channel=self.channel, note=note, velocity=0))
			return note

		if delay <= 0:
			self._note_on(note, velocity, [])
			return note

		box: typing.List[asyncio.TimerHandle] = []
		handle = loop.call_later(delay, self._note_on, note, velocity, box)
		box.append(handle)
		self._pending.add(handle)

		return note

	def cancel_pending (self) -> int:

		"""Cancel notes that have not been sent. Sounding notes still get their note off."""

		dropped = len(self._pending)

		for handle in self._pending:
			handle.cancel()

		self._pending = set()

		return dropped

	def silence (self) -> None:

		"""Cancel everything and send all-notes-off."""

		self.cancel_pending()

		for handle in self._note_offs:
			handle.cancel()

		self._note_offs = set()

		if self._port is not None:
			try:
				self._port.panic()
			except Exception:
				logger.exception("MIDI panic failed (device may be disconnected)")

	def close (self) -> None:

		"""Silence and close the port."""

		self.silence()

		if self._port is not None:
			self._port.close()
			self._port = None
