import pathlib
import typing

import pytest

import stepwave.__main__
import stepwave.config
import stepwave.engine
import stepwave.errors
import stepwave.live_server


class FakeServer:

	"""Stands in for a live server and records its lifecycle."""

	instances: typing.List["FakeServer"] = []

	def __init__ (self, engine: typing.Any, port: int = 0) -> None:

		self.started = False
		self.stopped = False
		FakeServer.instances.append(self)

	async def start (self) -> None:

		self.started = True

	async def stop (self) -> None:

		self.stopped = True


def test_parser_defaults () -> None:

	args = stepwave.__main__.build_parser().parse_args([])

	assert args.pattern_file is None
	assert args.config == "stepwave.yaml"
	assert args.cycles == 4
	assert not args.lenient


@pytest.mark.asyncio
async def test_invalid_pattern_disposes_engine (config: stepwave.config.EngineConfig, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:

	"""A pattern file that fails evaluation releases the output before the error propagates."""

	disposed: typing.List[stepwave.engine.Engine] = []
	original = stepwave.engine.Engine.dispose

	async def _dispose (self: stepwave.engine.Engine) -> None:
		disposed.append(self)
		await original(self)

	monkeypatch.setattr(stepwave.engine.Engine, "dispose", _dispose)

	path = tmp_path / "beat.txt"
	path.write_text('"bd zz"')
	args = stepwave.__main__.build_parser().parse_args([str(path)])

	with pytest.raises(stepwave.errors.EvaluationError):
		await stepwave.__main__.run(args, config)

	assert len(disposed) == 1
	assert not disposed[0].is_initialized


@pytest.mark.asyncio
async def test_failed_play_stops_servers (config: stepwave.config.EngineConfig, monkeypatch: pytest.MonkeyPatch) -> None:

	"""If playback cannot start, servers already started are stopped and the engine is disposed."""

	FakeServer.instances = []
	monkeypatch.setattr(stepwave.live_server, "LiveServer", FakeServer)

	config.live_port = 0
	engine = stepwave.engine.Engine(config)
	await engine.initialize()

	async def _broken_play () -> None:
		raise stepwave.errors.PlaybackError("no output")

	monkeypatch.setattr(engine, "play", _broken_play)

	with pytest.raises(stepwave.errors.PlaybackError):
		await stepwave.__main__.run_until_stopped(engine)

	assert len(FakeServer.instances) == 1
	assert FakeServer.instances[0].started
	assert FakeServer.instances[0].stopped
	assert not engine.is_initialized
