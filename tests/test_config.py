import logging
import pathlib

import pytest

import stepwave.config


def test_defaults () -> None:

	"""A bare config is a working realtime setup."""

	config = stepwave.config.EngineConfig()

	assert config.sample_rate == 44100
	assert config.default_bpm == 120
	assert config.master_volume == 0.75
	assert config.strict is True
	assert config.output == "audio"
	assert config.live_port is None


def test_from_mapping_reads_sections () -> None:

	"""Sectioned keys land on the matching fields."""

	config = stepwave.config.EngineConfig.from_mapping({
		"audio": {"sample_rate": 22050, "output": "offline", "master_volume": 0.5},
		"sequencer": {"default_bpm": 96, "strict": False},
		"samples": {"bd": "samples/kick.wav"},
		"live": {"port": 8800},
		"osc": {"receive_port": 9100, "send_port": 9101},
		"log_level": "debug",
	})

	assert config.sample_rate == 22050
	assert config.output == "offline"
	assert config.master_volume == 0.5
	assert config.default_bpm == 96
	assert config.strict is False
	assert config.sample_sources == {"bd": "samples/kick.wav"}
	assert config.live_port == 8800
	assert config.osc_receive_port == 9100
	assert config.osc_send_port == 9101
	assert config.log_level == "DEBUG"


def test_unknown_keys_are_ignored (caplog: pytest.LogCaptureFixture) -> None:

	"""Unknown sections and keys are logged, not fatal."""

	with caplog.at_level(logging.WARNING, logger="stepwave.config"):
		config = stepwave.config.EngineConfig.from_mapping({
			"video": {"fps": 30},
			"audio": {"reverb": True, "block_size": 128},
		})

	assert config.block_size == 128
	assert "video" in caplog.text
	assert "audio.reverb" in caplog.text


@pytest.mark.parametrize("kwargs", [
	{"output": "speakers"},
	{"default_bpm": 0},
	{"master_volume": 1.5},
	{"channels": 6},
	{"schedule_ahead": -0.1},
])
def test_invalid_values_raise (kwargs: dict) -> None:

	with pytest.raises(ValueError):
		stepwave.config.EngineConfig(**kwargs)


def test_missing_file_gives_defaults (tmp_path: pathlib.Path) -> None:

	"""A config path that does not exist falls back to the defaults."""

	config = stepwave.config.load_config(str(tmp_path / "nope.yaml"))

	assert config == stepwave.config.EngineConfig()


def test_load_yaml_file (tmp_path: pathlib.Path) -> None:

	"""A YAML file is read through from_mapping."""

	path = tmp_path / "stepwave.yaml"
	path.write_text("audio:\n  output: midi\n  midi_device: TR-8\nsequencer:\n  default_bpm: 128\n")

	config = stepwave.config.load_config(str(path))

	assert config.output == "midi"
	assert config.midi_device == "TR-8"
	assert config.default_bpm == 128


def test_empty_file_gives_defaults (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "empty.yaml"
	path.write_text("")

	assert stepwave.config.load_config(str(path)) == stepwave.config.EngineConfig()


def test_non_mapping_file_raises (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "list.yaml"
	path.write_text("- one\n- two\n")

	with pytest.raises(ValueError):
		stepwave.config.load_config(str(path))
