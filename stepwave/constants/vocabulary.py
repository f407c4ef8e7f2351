"""Vocabulary accepted by the pattern validator.

The validator is advisory: names outside these sets are reported but the
engine will still try to play the pattern (unknown samples are silent).
"""

KNOWN_SAMPLES = frozenset({
	"bd", "sd", "sn", "hh", "oh", "cp", "perc", "tom", "kick", "snare", "hihat",
	"piano", "bass", "lead", "pad", "pluck", "bell", "organ", "string",
	"drum", "cymbal", "crash", "ride", "clap", "rim", "cowbell", "block",
})

KNOWN_FUNCTIONS = frozenset({
	"s", "gain", "bpm", "note", "n", "lpf", "hpf", "bpf", "reverb", "delay",
	"fast", "slow", "rev", "iter", "every", "when", "unless",
	"pan", "room", "size", "crush", "shape", "vowel", "speed",
	"cut", "cutoff", "resonance", "attack", "release", "sustain", "decay",
})

# Names that are always available after Engine.initialize(), real or synthetic.

DEFAULT_SAMPLES = ("bd", "sd", "sn", "hh", "cp", "oh", "rim", "kick", "snare", "hihat")
