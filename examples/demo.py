import asyncio
import logging

import stepwave

logging.basicConfig(level=logging.INFO)

BEAT = '''
// four on the floor with an offbeat hat
stack(
  "bd bd bd bd",
  "~ ~ sd ~",
  "~ hh ~ hh ~ hh ~ hh"
).s(0.7).lpf(4000)
'''

BREAK = 'stack("bd ~ ~ bd ~ ~ bd ~", "~ sd ~ sd", "hh*16").s(0.6).bpm(128)'


async def main () -> None:

	engine = stepwave.Engine()
	await engine.initialize()

	await engine.evaluate(BEAT)
	await engine.play()

	# Four cycles at 120 BPM, then swap without stopping.
	await asyncio.sleep(8.0)
	await engine.evaluate(BREAK)
	await asyncio.sleep(8.0)

	await engine.dispose()


if __name__ == "__main__":
	print("Press Ctrl+C to stop.")
	asyncio.run(main())
