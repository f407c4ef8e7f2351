"""General MIDI drum notes for stepwave sample names.

Used by ``stepwave.midi_output.MidiOutputSink`` to turn sample triggers into
note messages on the GM percussion channel (channel 10, 0-indexed 9). Sample
names that have no sensible drum equivalent are left out and are skipped by
the MIDI sink.
"""

import typing


GM_DRUM_CHANNEL = 9

KICK_1 = 36
SIDE_STICK = 37
SNARE_1 = 38
HAND_CLAP = 39
LOW_TOM = 45
HI_HAT_CLOSED = 42
HI_HAT_OPEN = 46
CRASH_1 = 49
RIDE_1 = 51
RIDE_BELL = 53
COWBELL = 56
HIGH_WOODBLOCK = 76
HIGH_BONGO = 60


GM_SAMPLE_MAP: typing.Dict[str, int] = {
	"bd": KICK_1,
	"kick": KICK_1,
	"drum": KICK_1,
	"sd": SNARE_1,
	"sn": SNARE_1,
	"snare": SNARE_1,
	"hh": HI_HAT_CLOSED,
	"hihat": HI_HAT_CLOSED,
	"oh": HI_HAT_OPEN,
	"cp": HAND_CLAP,
	"clap": HAND_CLAP,
	"rim": SIDE_STICK,
	"tom": LOW_TOM,
	"perc": HIGH_BONGO,
	"crash": CRASH_1,
	"cymbal": CRASH_1,
	"ride": RIDE_1,
	"bell": RIDE_BELL,
	"cowbell": COWBELL,
	"block": HIGH_WOODBLOCK,
}
