"""Pattern generators - turn a scale, register and density into one loop's steps.

Each generator returns a list of ``length`` cells holding a MIDI note or
``None`` (a rest).  They are pure apart from the ``random.Random`` they are
handed, so a seeded generator reproduces the same pattern.

Three algorithms are available:

- **euclidean** - evenly spaced pulses; pitch wanders forward through the
  in-range scale tones by 1-3 positions per note.
- **scale** - a lead voice bounces across the scale tones, trailing a short
  run of grace notes behind it ("lead + tail").
- **random** - positions chosen at random, pitches spread evenly over the
  whole range so every region of the register is heard.

When the range holds no tone of the scale, every generator returns an all-rest
row and logs a warning.  That is an expected condition, not an error.
"""

import dataclasses
import logging
import math
import random
import typing

import evoloop.constants
import evoloop.scales
import evoloop.sequence_utils


logger = logging.getLogger(__name__)

Pattern = typing.List[typing.Optional[int]]


@dataclasses.dataclass
class EuclideanOptions:

	"""
	Options for :func:`generate_euclidean_pattern`.

	Attributes:
		timing: Placement mode passed to ``compute_positions``.
		start_offset: Phase rotation of the pulses.
		max_step: Largest forward jump through the sorted note list per pulse.
	"""

	timing: str = "euclidean"
	start_offset: int = 0
	max_step: int = 3


@dataclasses.dataclass
class ScaleOptions:

	"""
	Options for :func:`generate_scale_pattern`.

	Any field left as ``None`` is randomised on every call.

	Attributes:
		center_bias: -0.6 to 0.6.  Where the lead starts relative to the middle
			of the note list (0.0 = middle, +/-0.6 = 60% of the way to an edge).
		tail_length: Grace notes after each lead note (0 to ``max_tail``).
		max_tail: Upper bound for a randomised ``tail_length``.
		direction_mode: ``"alternate"`` reverses the sweep each time the lead
			has crossed the whole list; ``"random"`` also flips with a 10%
			chance after every lead note.
		lead_advance: 1 or 2 list positions per lead note.
		density_timing: Placement mode for the note positions.
		mapping: ``"sequential"`` gives the k-th stream note to the k-th chosen
			step; ``"index"`` gives step ``pos`` the stream note at ``pos``,
			which ties pitch to absolute time and repeats audibly.
		start_offset: Phase rotation of the chosen steps.
	"""

	center_bias: typing.Optional[float] = None
	tail_length: typing.Optional[int] = None
	max_tail: int = 5
	direction_mode: typing.Optional[str] = None
	lead_advance: typing.Optional[int] = None
	density_timing: str = "random"
	mapping: str = "sequential"
	start_offset: int = 0


@dataclasses.dataclass
class RandomOptions:

	"""Options for :func:`generate_random_pattern`."""

	timing: str = "random"
	start_offset: int = 0


DIRECTION_MODES = ("alternate", "random")
MAPPINGS = ("sequential", "index")
MAX_CENTER_BIAS = 0.6
RANDOM_FLIP_PROBABILITY = 0.1


def _rests (length: int) -> Pattern:

	"""Return an all-rest row."""

	return [None] * max(0, length)


def generate_euclidean_pattern (
	length: int,
	scale_intervals: typing.Sequence[int],
	base_note: int,
	note_range_min: int,
	note_range_max: int,
	density: float,
	options: typing.Optional[EuclideanOptions] = None,
	rng: typing.Optional[random.Random] = None
) -> Pattern:

	"""
	Place evenly spaced pulses and walk the sorted scale tones forward.

	Each pulse, visited in ascending step order, takes the current note and then
	moves 1 to ``max_step`` positions further along the list (wrapping), which
	gives a smoothly wandering contour rather than unrelated random picks.
	"""

	options = options or EuclideanOptions()
	rng = rng or random.Random()
	density = evoloop.sequence_utils.clamp(density, 0.0, 1.0)

	notes = evoloop.scales.possible_notes(scale_intervals, base_note, note_range_min, note_range_max)

	if not notes:
		logger.warning(f"Euclidean pattern: no scale tones in {note_range_min}..{note_range_max} (base {base_note}), returning rests")
		return _rests(length)

	positions = evoloop.sequence_utils.compute_positions(
		length,
		density,
		mode = options.timing,
		start_offset = options.start_offset,
		allow_zero = True,
		rng = rng
	)

	pattern = _rests(length)
	index = rng.randrange(len(notes))
	max_step = max(1, options.max_step)

	for position in sorted(positions):
		pattern[position] = notes[index]
		index = (index + rng.randint(1, max_step)) % len(notes)

	logger.debug(f"Euclidean pattern steps={length} pulses={len(positions)} density={density:.2f} range={note_range_min}..{note_range_max}")

	return pattern


def _build_stream (
	notes: typing.List[int],
	length: int,
	lead_index: int,
	direction: int,
	tail_length: int,
	lead_advance: int,
	direction_mode: str,
	rng: random.Random
) -> typing.List[int]:

	"""
	Produce ``length`` notes of lead + tail traversal over ``notes``.

	Tail notes step away from the lead *against* the travel direction and stop
	at the list edge (they never wrap).  The lead bounces off either edge.
	"""

	if len(notes) == 1:
		return [notes[0]] * length

	last = len(notes) - 1
	stream: typing.List[int] = []
	travelled = 0

	while len(stream) < length:

		stream.append(notes[lead_index])

		for t in range(1, tail_length + 1):

			if len(stream) >= length:
				break

			tail_index = lead_index - direction * t

			if tail_index < 0 or tail_index > last:
				break

			stream.append(notes[tail_index])

		next_index = lead_index + direction * lead_advance

		if next_index < 0 or next_index > last:
			direction = -direction
			travelled = 0
			next_index = max(0, min(last, lead_index + direction * lead_advance))

		travelled += abs(next_index - lead_index)
		lead_index = next_index

		if direction_mode == "alternate":
			# One sweep is complete once the lead has covered the whole list.
			if travelled >= last:
				direction = -direction
				travelled = 0

		elif rng.random() < RANDOM_FLIP_PROBABILITY:
			direction = -direction
			travelled = 0

	return stream[:length]


def _map_stream (stream: typing.List[int], positions: typing.List[int], length: int, mapping: str) -> Pattern:

	"""Lay a note stream onto the chosen steps."""

	pattern = _rests(length)

	if not stream:
		return pattern

	if mapping == "index":
		for position in positions:
			pattern[position] = stream[position % len(stream)]

	else:
		for k, position in enumerate(sorted(positions)):
			pattern[position] = stream[k % len(stream)]

	return pattern


def generate_scale_pattern (
	length: int,
	scale_intervals: typing.Sequence[int],
	base_note: int,
	note_range_min: int,
	note_range_max: int,
	density: float,
	options: typing.Optional[ScaleOptions] = None,
	rng: typing.Optional[random.Random] = None
) -> Pattern:

	"""
	Lead voice bouncing across the scale with trailing grace notes.

	A full-length note stream is built first, so density only decides *where*
	notes sound, never how much of the melody exists.  If the placed pattern
	ends up with too few distinct pitches the stream is rebuilt once with the
	longest tail and a lead advance of 2.

	Example:
		```python
		row = generate_scale_pattern(
			16, evoloop.scales.get_scale("dorian"), 48, 48, 72, 0.5,
			options=ScaleOptions(tail_length=2, direction_mode="alternate"),
			rng=random.Random(7),
		)
		```
	"""

	options = options or ScaleOptions()
	rng = rng or random.Random()
	density = evoloop.sequence_utils.clamp(density, 0.0, 1.0)

	if options.mapping not in MAPPINGS:
		raise ValueError(f"Unknown mapping {options.mapping!r}. Available: {list(MAPPINGS)}")

	if options.direction_mode is not None and options.direction_mode not in DIRECTION_MODES:
		raise ValueError(f"Unknown direction mode {options.direction_mode!r}. Available: {list(DIRECTION_MODES)}")

	notes = evoloop.scales.possible_notes(scale_intervals, base_note, note_range_min, note_range_max)

	if not notes:
		logger.warning(f"Scale pattern: no scale tones in {note_range_min}..{note_range_max} (base {base_note}), returning rests")
		return _rests(length)

	positions = evoloop.sequence_utils.compute_positions(
		length,
		density,
		mode = options.density_timing,
		start_offset = options.start_offset,
		allow_zero = True,
		rng = rng
	)

	if not positions:
		return _rests(length)

	max_tail = max(0, options.max_tail)

	if options.center_bias is None:
		center_bias = rng.uniform(-MAX_CENTER_BIAS, MAX_CENTER_BIAS)
	else:
		center_bias = evoloop.sequence_utils.clamp(options.center_bias, -MAX_CENTER_BIAS, MAX_CENTER_BIAS)

	if options.tail_length is None:
		tail_length = rng.randint(0, max_tail)
	else:
		tail_length = max(0, min(max_tail, options.tail_length))

	direction_mode = options.direction_mode or rng.choice(DIRECTION_MODES)
	lead_advance = options.lead_advance if options.lead_advance in (1, 2) else rng.choice((1, 2))
	direction = rng.choice((1, -1))

	middle = (len(notes) - 1) / 2.0
	lead_index = int(round(middle + center_bias * middle))
	lead_index = max(0, min(len(notes) - 1, lead_index))

	stream = _build_stream(notes, length, lead_index, direction, tail_length, lead_advance, direction_mode, rng)
	pattern = _map_stream(stream, positions, length, options.mapping)

	placements = len(positions)
	required = min(len(notes), max(5, math.ceil(placements / 4)))
	distinct = len({note for note in pattern if note is not None})

	if distinct < required:
		# Corrective pass, runs at most once.
		forced_tail = max(1, max_tail)
		stream = _build_stream(notes, length, lead_index, direction, forced_tail, 2, direction_mode, rng)
		pattern = _map_stream(stream, positions, length, options.mapping)
		logger.debug(f"Scale pattern rebuilt for variety: {distinct} distinct < {required}, tail={forced_tail} advance=2")

	logger.debug(
		f"Scale pattern steps={length} placements={placements} lead={evoloop.scales.note_name(notes[lead_index])} "
		f"tail={tail_length} advance={lead_advance} direction={direction_mode} mapping={options.mapping}"
	)

	return pattern


def generate_random_pattern (
	length: int,
	scale_intervals: typing.Sequence[int],
	base_note: int,
	note_range_min: int,
	note_range_max: int,
	density: float,
	options: typing.Optional[RandomOptions] = None,
	rng: typing.Optional[random.Random] = None
) -> Pattern:

	"""
	Random positions with pitches spread evenly across the sorted range.

	With ``k`` placements and ``n`` available notes, placement ``i`` (in step
	order) gets ``notes[floor(i * n / k)]`` when ``k <= n`` and
	``notes[i % n]`` otherwise, so the whole register is covered without
	clustering.
	"""

	options = options or RandomOptions()
	rng = rng or random.Random()
	density = evoloop.sequence_utils.clamp(density, 0.0, 1.0)

	notes = evoloop.scales.possible_notes(scale_intervals, base_note, note_range_min, note_range_max)

	if not notes:
		logger.warning(f"Random pattern: no scale tones in {note_range_min}..{note_range_max} (base {base_note}), returning rests")
		return _rests(length)

	positions = sorted(evoloop.sequence_utils.compute_positions(
		length,
		density,
		mode = options.timing,
		start_offset = options.start_offset,
		allow_zero = True,
		rng = rng
	))

	count = len(positions)
	pattern = _rests(length)

	for i, position in enumerate(positions):

		if count <= len(notes):
			pattern[position] = notes[(i * len(notes)) // count]
		else:
			pattern[position] = notes[i % len(notes)]

	logger.debug(f"Random pattern steps={length} notes={count} density={density:.2f} range={note_range_min}..{note_range_max}")

	return pattern


GENERATORS: typing.Dict[str, typing.Callable[..., Pattern]] = {
	"euclidean": generate_euclidean_pattern,
	"scale": generate_scale_pattern,
	"random": generate_random_pattern,
}


def choose_pattern_type (probabilities: typing.Optional[typing.Dict[str, float]], rng: random.Random) -> str:

	"""
	Pick a generator name from relative weights.

	Missing names count as zero.  When every weight is zero the choice is
	uniform over all generators.  Negative weights raise ``ValueError``.
	"""

	probabilities = probabilities or {}

	for name, weight in probabilities.items():
		if weight < 0:
			raise ValueError(f"Pattern probability for {name!r} must be non-negative, got {weight}")

	options = [
		(name, float(probabilities.get(name, 0.0)))
		for name in evoloop.constants.PATTERN_TYPES
		if probabilities.get(name, 0.0) > 0
	]

	if not options:
		return rng.choice(evoloop.constants.PATTERN_TYPES)

	return evoloop.sequence_utils.weighted_choice(options, rng)


def generate_pattern (
	pattern_type: str,
	length: int,
	scale_intervals: typing.Sequence[int],
	base_note: int,
	note_range_min: int,
	note_range_max: int,
	density: float,
	options: typing.Any = None,
	rng: typing.Optional[random.Random] = None
) -> Pattern:

	"""Dispatch to the generator named ``pattern_type``."""

	if pattern_type not in GENERATORS:
		raise ValueError(f"Unknown pattern type {pattern_type!r}. Available: {list(GENERATORS)}")

	return GENERATORS[pattern_type](
		length,
		scale_intervals,
		base_note,
		note_range_min,
		note_range_max,
		density,
		options = options,
		rng = rng
	)
