"""Step clock jitter benchmark.

Runs the scheduler's timing loop for a configurable number of cycles and
measures how late each step is dispatched relative to its ideal tick time.

Usage:
    python benchmarks/step_jitter.py [--bpm BPM] [--cycles N] [--no-spin-wait]
                                     [--pattern TEXT] [--compare]

Options:
    --bpm BPM           Tempo in BPM (default: 120)
    --cycles N          Number of 16-step cycles to measure (default: 16)
    --no-spin-wait      Disable hybrid sleep+spin (use pure asyncio waits)
    --pattern TEXT      Pattern text to dispatch while measuring
    --compare           Run both modes and print a side-by-side comparison
"""

import argparse
import asyncio
import logging
import statistics
import time

# Suppress engine logging during benchmark; we want clean output.
logging.basicConfig(level=logging.ERROR)

import stepwave.constants.vocabulary
import stepwave.output
import stepwave.parser
import stepwave.sample_bank
import stepwave.scheduler
import stepwave.transport

# ---------------------------------------------------------------------------

STEPS_PER_CYCLE = 16
DEFAULT_PATTERN = 'stack("bd ~ ~ ~", "~ ~ sd ~", "hh*16").s(0.7)'


def _run_benchmark (bpm: float, cycles: int, spin_wait: bool, pattern_text: str) -> list[float]:

	"""Run the scheduler for *cycles* cycles and return per-step lateness (seconds)."""

	jitter_log: list[float] = []
	steps = cycles * STEPS_PER_CYCLE
	total_seconds = stepwave.transport.step_duration_for(bpm) * steps

	bank = stepwave.sample_bank.SampleBank(22050)

	for name in stepwave.constants.vocabulary.DEFAULT_SAMPLES:
		bank.add_synthetic(name)

	async def _run () -> None:

		# The offline sink never renders, so triggers only cost the dispatch itself.
		sink = stepwave.output.AudioOutputSink(bank)
		scheduler = stepwave.scheduler.Scheduler(sink, default_bpm=bpm, spin_wait=spin_wait)
		scheduler.add_pattern(stepwave.parser.parse(pattern_text))

		def _record (step: int, tick_time: float) -> None:
			jitter_log.append(time.perf_counter() - tick_time)
			sink.silence()

		scheduler.on_event("step", _record)

		await scheduler.start()
		await asyncio.sleep(total_seconds + 0.05)
		await scheduler.stop()

		sink.close()

	asyncio.run(_run())

	# Trim to the expected step count in case of minor over-run.
	return jitter_log[:steps]


def _print_report (jitter: list[float], bpm: float, cycles: int, spin_wait: bool, label: str = "") -> None:

	if not jitter:
		print("No jitter data collected.")
		return

	ms = [j * 1000 for j in jitter]

	mean_ms   = statistics.mean(ms)
	median_ms = statistics.median(ms)
	stdev_ms  = statistics.stdev(ms) if len(ms) > 1 else 0.0
	p95_ms    = sorted(ms)[int(len(ms) * 0.95)]
	p99_ms    = sorted(ms)[int(len(ms) * 0.99)]
	max_ms    = max(ms)

	# Non-accumulating drift: difference between first and last samples.
	drift_ms  = ms[-1] - ms[0] if len(ms) > 1 else 0.0

	step_ms = stepwave.transport.step_duration_for(bpm) * 1000

	mode = "spin-wait ON" if spin_wait else "spin-wait OFF"
	header = f"  {label}  " if label else " "

	print(f"\nStep Jitter Benchmark{header}- {cycles} cycles at {bpm:.0f} BPM ({mode})")
	print(f"{'─' * 62}")
	print(f"  Steps measured  : {len(ms)}")
	print(f"  Step interval   : {step_ms:.3f} ms  (sixteenth notes)")
	print(f"{'─' * 62}")
	print(f"  Mean lateness   : {mean_ms:>8.3f} ms")
	print(f"  Median lateness : {median_ms:>8.3f} ms")
	print(f"  Std deviation   : {stdev_ms:>8.3f} ms")
	print(f"  P95 lateness    : {p95_ms:>8.3f} ms")
	print(f"  P99 lateness    : {p99_ms:>8.3f} ms")
	print(f"  Max lateness    : {max_ms:>8.3f} ms")
	print(f"  Clock drift     : {drift_ms:>+8.3f} ms  (non-accumulating)")
	print(f"{'─' * 62}")

	if mean_ms < 0.5:
		rating = "Very good  (sub-500 μs, well below human perception)"
	elif mean_ms < 2.0:
		rating = "Good       (< 2 ms, at or below human perception threshold)"
	elif mean_ms < 5.0:
		rating = "Fair       (2-5 ms, audible on tight hi-hat rolls)"
	else:
		rating = "Poor       (> 5 ms, noticeable timing issues likely)"

	print(f"  Rating          : {rating}")
	print()


def main () -> None:

	parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
	parser.add_argument("--bpm",          type=float, default=120,             help="Tempo in BPM (default: 120)")
	parser.add_argument("--cycles",       type=int,   default=16,              help="Cycles to measure (default: 16)")
	parser.add_argument("--no-spin-wait", action="store_true",                 help="Disable spin-wait")
	parser.add_argument("--pattern",      type=str,   default=DEFAULT_PATTERN, help="Pattern text to dispatch")
	parser.add_argument("--compare",      action="store_true",                 help="Run both modes and compare")
	args = parser.parse_args()

	if args.compare:
		print("\nRunning with spin-wait ON ...")
		spin_jitter = _run_benchmark(args.bpm, args.cycles, spin_wait=True, pattern_text=args.pattern)
		_print_report(spin_jitter, args.bpm, args.cycles, spin_wait=True, label="[spin-wait ON]")

		print("Running with spin-wait OFF ...")
		pure_jitter = _run_benchmark(args.bpm, args.cycles, spin_wait=False, pattern_text=args.pattern)
		_print_report(pure_jitter, args.bpm, args.cycles, spin_wait=False, label="[spin-wait OFF]")

	else:
		spin = not args.no_spin_wait
		jitter = _run_benchmark(args.bpm, args.cycles, spin_wait=spin, pattern_text=args.pattern)
		_print_report(jitter, args.bpm, args.cycles, spin_wait=spin)


if __name__ == "__main__":
	main()
