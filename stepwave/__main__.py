import argparse
import asyncio
import logging
import signal
import typing

import stepwave.config
import stepwave.engine
import stepwave.errors
import stepwave.live_server
import stepwave.osc


logger = logging.getLogger(__name__)

DEMO_PATTERN = 'stack("bd ~ ~ ~", "~ ~ sd ~", "hh hh hh hh").s(0.7)'


def build_parser () -> argparse.ArgumentParser:

	"""
	Command-line options. Everything else comes from the config file.
	"""

	parser = argparse.ArgumentParser(prog="stepwave", description="Live-coding drum machine engine.")
	parser.add_argument("pattern_file", nargs="?", help="File containing pattern text (default: a demo beat)")
	parser.add_argument("--config", default="stepwave.yaml", help="YAML config file (default: stepwave.yaml)")
	parser.add_argument("--render", metavar="PATH", help="Render to an audio file instead of playing")
	parser.add_argument("--cycles", type=int, default=4, help="Cycles to render with --render (default: 4)")
	parser.add_argument("--lenient", action="store_true", help="Play patterns even if they fail validation")

	return parser


async def run_until_stopped (engine: stepwave.engine.Engine) -> None:

	"""
	Play until SIGINT/SIGTERM, with the live and OSC servers if configured.
	"""

	config = engine.config
	servers: typing.List[typing.Any] = []

	if config.live_port is not None:
		servers.append(stepwave.live_server.LiveServer(engine, port=config.live_port))

	if config.osc_receive_port is not None:
		servers.append(stepwave.osc.OscServer(engine, receive_port=config.osc_receive_port, send_port=config.osc_send_port))

	stop_event = asyncio.Event()
	loop = asyncio.get_running_loop()

	def _request_stop () -> None:

		"""
		Signal handler to request a clean shutdown.
		"""

		stop_event.set()

	try:
		for server in servers:
			await server.start()

		await engine.play()

		logger.info("Playing. Press Ctrl+C to stop.")

		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.add_signal_handler(sig, _request_stop)

		await stop_event.wait()

	finally:
		for server in servers:
			await server.stop()

		await engine.dispose()


async def run (args: argparse.Namespace, config: stepwave.config.EngineConfig) -> None:

	"""
	Async entry point: evaluate the pattern, then play or render it.
	"""

	text = DEMO_PATTERN

	if args.pattern_file:
		with open(args.pattern_file, "r") as f:
			text = f.read()

	if args.render:
		config.output = "offline"
		engine = stepwave.engine.Engine(config)
		await engine.render(text, args.render, cycles=args.cycles)
		return

	engine = stepwave.engine.Engine(config)
	await engine.initialize()

	try:
		await engine.evaluate(text)
	except stepwave.errors.StepwaveError:
		await engine.dispose()
		raise

	await run_until_stopped(engine)


def main () -> None:

	"""
	Main entry point for the stepwave command.
	"""

	args = build_parser().parse_args()
	config = stepwave.config.load_config(args.config)

	if args.lenient:
		config.strict = False

	logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))

	logger.info("Stepwave starting...")

	try:
		asyncio.run(run(args, config))

	except KeyboardInterrupt:
		pass

	except stepwave.errors.StepwaveError as exc:
		logger.error(str(exc))
		raise SystemExit(1)


if __name__ == "__main__":
	main()
