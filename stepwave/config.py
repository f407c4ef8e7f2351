"""Engine configuration and YAML loading.

A config file groups settings into sections::

    audio:
      sample_rate: 44100
      block_size: 256
      channels: 2
      master_volume: 0.75
      output: audio          # audio | midi | offline
      midi_device: null
    sequencer:
      default_bpm: 120
      strict: true
      schedule_ahead: 0.0
      spin_wait: true
    samples:
      bd: samples/kick.wav
      sd: https://example.com/snare.wav
    live:
      port: 8765
    osc:
      receive_port: 9000
      send_port: 9001
    log_level: INFO

Every key is optional.
"""

import dataclasses
import logging
import os
import typing

import yaml

import stepwave.constants


logger = logging.getLogger(__name__)

OUTPUT_KINDS = ("audio", "midi", "offline")

# section -> {yaml key: EngineConfig field}
_SECTIONS: typing.Dict[str, typing.Dict[str, str]] = {
	"audio": {
		"sample_rate": "sample_rate",
		"block_size": "block_size",
		"channels": "channels",
		"master_volume": "master_volume",
		"output": "output",
		"midi_device": "midi_device",
	},
	"sequencer": {
		"default_bpm": "default_bpm",
		"strict": "strict",
		"schedule_ahead": "schedule_ahead",
		"spin_wait": "spin_wait",
	},
	"live": {
		"port": "live_port",
	},
	"osc": {
		"receive_port": "osc_receive_port",
		"send_port": "osc_send_port",
	},
}


@dataclasses.dataclass
class EngineConfig:

	"""
	Settings for an ``Engine``. The defaults give a working realtime setup.
	"""

	sample_rate: int = stepwave.constants.DEFAULT_SAMPLE_RATE
	block_size: int = stepwave.constants.DEFAULT_BLOCK_SIZE
	channels: int = stepwave.constants.DEFAULT_CHANNELS
	default_bpm: float = stepwave.constants.DEFAULT_BPM
	master_volume: float = stepwave.constants.DEFAULT_MASTER_VOLUME
	strict: bool = True
	schedule_ahead: float = 0.0
	spin_wait: bool = True
	sample_sources: typing.Dict[str, str] = dataclasses.field(default_factory=dict)
	output: str = "audio"
	midi_device: typing.Optional[str] = None
	live_port: typing.Optional[int] = None
	osc_receive_port: typing.Optional[int] = None
	osc_send_port: typing.Optional[int] = None
	log_level: str = "INFO"

	def __post_init__ (self) -> None:

		"""Reject values the engine cannot run with."""

		if self.sample_rate <= 0:
			raise ValueError("sample_rate must be positive")

		if self.block_size <= 0:
			raise ValueError("block_size must be positive")

		if self.channels not in (1, 2):
			raise ValueError("channels must be 1 or 2")

		if self.default_bpm <= 0:
			raise ValueError("default_bpm must be positive")

		if not 0.0 <= self.master_volume <= 1.0:
			raise ValueError("master_volume must be within [0, 1]")

		if self.schedule_ahead < 0:
			raise ValueError("schedule_ahead cannot be negative")

		if self.output not in OUTPUT_KINDS:
			raise ValueError(f"output must be one of {OUTPUT_KINDS}, not {self.output!r}")

	@classmethod
	def from_mapping (cls, data: typing.Optional[typing.Mapping[str, typing.Any]]) -> "EngineConfig":

		"""
		Build a config from the sectioned mapping a YAML file produces.

		Unknown sections and keys are logged and ignored.
		"""

		values: typing.Dict[str, typing.Any] = {}

		for section, content in (data or {}).items():

			if section == "samples":
				values["sample_sources"] = {str(name): str(source) for name, source in (content or {}).items()}
				continue

			if section == "log_level":
				values["log_level"] = str(content).upper()
				continue

			fields = _SECTIONS.get(section)

			if fields is None:
				logger.warning(f"Ignoring unknown config section {section!r}")
				continue

			for key, value in (content or {}).items():

				if key not in fields:
					logger.warning(f"Ignoring unknown config key {section}.{key}")
					continue

				values[fields[key]] = value

		return cls(**values)


def load_config (config_path: str = "stepwave.yaml") -> EngineConfig:

	"""
	Load configuration from a YAML file.

	A missing or empty file gives the defaults.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return EngineConfig()

	with open(config_path, "r") as f:
		data = yaml.safe_load(f)

	if data is not None and not isinstance(data, dict):
		raise ValueError(f"Config file {config_path} must contain a mapping")

	return EngineConfig.from_mapping(data)
