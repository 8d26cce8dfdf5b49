"""Shared limits and defaults for evoloop.

The notes matrix is a fixed grid of ``MAX_LOOPS`` rows by ``MAX_STEPS``
columns.  Every MIDI note the core writes is clamped into
``[MIN_NOTE, MAX_NOTE]``, the playable register shared by all loops.
"""

# Matrix geometry

MAX_LOOPS = 16
MAX_STEPS = 32
DEFAULT_LENGTH = 16

# Energy is normalised against a loop of this many steps.
REFERENCE_LENGTH = 16

# MIDI register clamp (C1 to C7)

MIN_NOTE = 24
MAX_NOTE = 96

DEFAULT_BASE_NOTE = 60
DEFAULT_SCALE = "major"

# Loop defaults

DEFAULT_DENSITY = 0.4
DEFAULT_VOLUME = 0.5
DEFAULT_OCTAVE_RANGE = 2

DENSITY_MODES = ("auto", "manual")
GENERATION_MODES = ("auto", "locked")
PATTERN_TYPES = ("euclidean", "scale", "random")

# MIDI standard range

MIN_VELOCITY = 0
MAX_VELOCITY = 127
DEFAULT_VELOCITY = 100
