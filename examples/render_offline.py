import asyncio

import stepwave

config = stepwave.EngineConfig(output="offline")
engine = stepwave.Engine(config)

PATTERN = 'stack("bd ~ ~ ~", "~ ~ sd ~", "hh hh hh hh").s(0.7).delay(0.25)'

if __name__ == "__main__":
	audio = asyncio.run(engine.render(PATTERN, "demo.wav", cycles=4))
	print(f"Wrote demo.wav ({audio.shape[0] / config.sample_rate:.2f} s)")
