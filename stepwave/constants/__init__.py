"""Constants for stepwave.

This package contains:

- ``stepwave.constants`` - Grid resolution, tempo and gain defaults (below)
- ``stepwave.constants.vocabulary`` - Sample names and modifier functions the validator accepts
- ``stepwave.constants.gm_drums`` - Sample name to General MIDI drum note map (MIDI output)
"""

# Step grid. Every layer is quantised to a fixed 16-slot cycle of sixteenth notes.

STEPS_PER_CYCLE = 16
STEPS_PER_BEAT = 4

# Tempo

DEFAULT_BPM = 120
MIN_BPM = 1
MAX_BPM = 999

# Gain

DEFAULT_PATTERN_GAIN = 0.7     # Pattern.gain when the text has no .s()/.gain()
DEFAULT_SAMPLE_GAIN = 0.7      # One-shot play_sample() gain
DEFAULT_MASTER_VOLUME = 0.75

# Audio

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_BLOCK_SIZE = 256
DEFAULT_CHANNELS = 2

# Synthetic samples

SYNTHETIC_DURATION_SECONDS = 0.2
SYNTHETIC_AMPLITUDE = 0.3

# Tokens inside a quoted layer that mean "nothing plays here".

REST_TOKENS = frozenset({"~", ".", ""})
