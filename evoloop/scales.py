"""Scale lookup and note utilities.

Loops always store a scale by *name*.  The interval list is resolved through
:func:`get_scale` at the point of use, so a loop whose scale is renamed or
re-registered picks up the change on its next generation.  An unknown name is
a caller error and raises ``ValueError``; nothing here ever substitutes a
default scale.
"""

import random
import typing

import evoloop.constants


SCALE_DEFINITIONS: typing.Dict[str, typing.List[int]] = {
	"major": [0, 2, 4, 5, 7, 9, 11],
	"minor": [0, 2, 3, 5, 7, 8, 10],
	"dorian": [0, 2, 3, 5, 7, 9, 10],
	"phrygian": [0, 1, 3, 5, 7, 8, 10],
	"lydian": [0, 2, 4, 6, 7, 9, 11],
	"mixolydian": [0, 2, 4, 5, 7, 9, 10],
	"locrian": [0, 1, 3, 5, 6, 8, 10],
	"harmonic_minor": [0, 2, 3, 5, 7, 8, 11],
	"melodic_minor": [0, 2, 3, 5, 7, 9, 11],
	"pentatonic": [0, 2, 4, 7, 9],
	"minor_pentatonic": [0, 3, 5, 7, 10],
	"blues": [0, 3, 5, 6, 7, 10],
	"major_blues": [0, 2, 3, 4, 7, 9],
	"whole_tone": [0, 2, 4, 6, 8, 10],
	"diminished": [0, 1, 3, 4, 6, 7, 9, 10],
	"acoustic": [0, 2, 4, 6, 7, 9, 10],
	"altered": [0, 1, 3, 4, 6, 8, 10],
	"hirajoshi": [0, 2, 3, 7, 8],
	"kumoi": [0, 2, 3, 7, 9],
	"pelog": [0, 1, 3, 7, 8],
	"chromatic": [0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11],
	"augmented": [0, 3, 4, 7, 8, 11],
	"bebop": [0, 2, 4, 5, 7, 9, 10, 11],
}


# Older presets stored camelCase scale names.
LEGACY_SCALE_NAMES: typing.Dict[str, str] = {
	"harmonicMinor": "harmonic_minor",
	"melodicMinor": "melodic_minor",
	"minorPentatonic": "minor_pentatonic",
	"majorBlues": "major_blues",
	"wholeTone": "whole_tone",
}


CONSONANT_SCALES: typing.List[str] = ["major", "lydian", "mixolydian", "pentatonic", "minor"]

DISSONANT_SCALES: typing.List[str] = ["diminished", "whole_tone", "chromatic", "phrygian", "locrian"]

SCALE_RELATIONS: typing.Dict[str, typing.List[str]] = {
	"major": ["lydian", "mixolydian", "minor", "pentatonic"],
	"minor": ["dorian", "phrygian", "harmonic_minor", "major"],
	"dorian": ["minor", "mixolydian", "major", "pentatonic"],
	"phrygian": ["minor", "harmonic_minor", "diminished"],
	"lydian": ["major", "mixolydian", "whole_tone"],
	"mixolydian": ["major", "dorian", "lydian"],
	"pentatonic": ["major", "dorian", "mixolydian"],
}

# Used when a scale has no entry in SCALE_RELATIONS.
DEFAULT_RELATIONS: typing.List[str] = ["major", "minor", "dorian"]

NOTE_NAMES: typing.List[str] = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def get_scale (name: str) -> typing.List[int]:

	"""
	Return the interval list (semitone offsets 0-11) for a scale name.

	Raises ``ValueError`` for names that are not registered.
	"""

	if not isinstance(name, str) or name not in SCALE_DEFINITIONS:
		raise ValueError(f"Unknown scale {name!r}. Available: {sorted(SCALE_DEFINITIONS)}")

	return list(SCALE_DEFINITIONS[name])


def scale_names () -> typing.List[str]:

	"""Return every registered scale name in registration order."""

	return list(SCALE_DEFINITIONS)


def register_scale (name: str, intervals: typing.List[int]) -> None:

	"""
	Register a custom scale so loops can refer to it by name.

	Parameters:
		name: Scale name used by ``LoopMetadata.scale`` and ``update_scale()``.
		intervals: Ascending semitone offsets from the root, starting at 0.

	Example:
		```python
		evoloop.scales.register_scale("prometheus", [0, 2, 4, 6, 9, 10])
		ensemble.update_scale("prometheus")
		```
	"""

	if not intervals or intervals[0] != 0:
		raise ValueError("Scale intervals must start with 0")

	if any(i < 0 or i > 11 for i in intervals):
		raise ValueError("Scale intervals must be between 0 and 11")

	if sorted(set(intervals)) != list(intervals):
		raise ValueError("Scale intervals must be strictly ascending")

	SCALE_DEFINITIONS[name] = list(intervals)


def resolve_legacy_name (name: typing.Any) -> typing.Optional[str]:

	"""Map a stored scale name (possibly from an older preset) to a registered name, or None."""

	if not isinstance(name, str):
		return None

	name = LEGACY_SCALE_NAMES.get(name, name)

	return name if name in SCALE_DEFINITIONS else None


def possible_notes (scale_intervals: typing.Sequence[int], base_note: int, note_range_min: int, note_range_max: int) -> typing.List[int]:

	"""
	Enumerate every ``base_note + interval + 12k`` inside the inclusive range.

	Returns a sorted list without duplicates.  An empty list means the range is
	too narrow for this scale and root; callers treat that as recoverable.
	"""

	if note_range_min > note_range_max:
		return []

	min_octave = (note_range_min - base_note) // 12 - 1
	max_octave = (note_range_max - base_note) // 12 + 1

	notes: typing.Set[int] = set()

	for octave in range(min_octave, max_octave + 1):
		for interval in scale_intervals:
			note = base_note + interval + octave * 12
			if note_range_min <= note <= note_range_max:
				notes.add(note)

	return sorted(notes)


def clamp_to_midi_range (note: int, low: int = evoloop.constants.MIN_NOTE, high: int = evoloop.constants.MAX_NOTE) -> int:

	"""
	Fold a note into ``[low, high]`` by whole octaves, preserving its pitch class.

	When the range is narrower than an octave the pitch class may not fit at
	all; the note is then clamped to the nearest bound.
	"""

	if note < low:
		note += 12 * ((low - note + 11) // 12)

	if note > high:
		note -= 12 * ((note - high + 11) // 12)

	return max(low, min(high, note))


def quantize_to_scale (
	note: int,
	scale_intervals: typing.Sequence[int],
	base_note: int,
	low: int = evoloop.constants.MIN_NOTE,
	high: int = evoloop.constants.MAX_NOTE
) -> int:

	"""
	Snap a MIDI note to the nearest scale tone measured from ``base_note``.

	Searches outward in semitone steps.  When two tones are equidistant the
	lower one wins.  The result is then folded into ``[low, high]``.

	Example:
		```python
		# C# (61) in C major rooted on 60 snaps down to C (60)
		quantize_to_scale(61, get_scale("major"), 60)  # → 60
		```
	"""

	pcs = {interval % 12 for interval in scale_intervals}
	relative = (note - base_note) % 12

	snapped = note

	if relative not in pcs:
		for offset in range(1, 7):
			if (relative - offset) % 12 in pcs:
				snapped = note - offset
				break
			if (relative + offset) % 12 in pcs:
				snapped = note + offset
				break

	return clamp_to_midi_range(snapped, low, high)


def note_name (note: int) -> str:

	"""Return a readable name such as ``"C4"`` for a MIDI note number (C4 = 60)."""

	return f"{NOTE_NAMES[note % 12]}{note // 12 - 1}"


def _pick (candidates: typing.List[str], exclude: typing.Iterable[str], rng: random.Random) -> typing.Optional[str]:

	"""Choose one candidate not in ``exclude``, or None when every candidate is excluded."""

	excluded = set(exclude)
	available = [name for name in candidates if name not in excluded and name in SCALE_DEFINITIONS]

	if not available:
		return None

	return rng.choice(available)


def random_scale (rng: random.Random, current: typing.Optional[str] = None, recent: typing.Sequence[str] = ()) -> str:

	"""Pick any registered scale other than the current one, avoiding recent picks when possible."""

	exclude = list(recent) + ([current] if current else [])
	chosen = _pick(scale_names(), exclude, rng)

	if chosen is None:
		chosen = _pick(scale_names(), [current] if current else [], rng)

	return chosen if chosen is not None else scale_names()[0]


def consonant_scale (rng: random.Random, current: typing.Optional[str] = None, recent: typing.Sequence[str] = ()) -> str:

	"""Pick a consonant scale that is neither current nor recent (falls back to ``"major"``)."""

	chosen = _pick(CONSONANT_SCALES, list(recent) + ([current] if current else []), rng)
	return chosen if chosen is not None else "major"


def dissonant_scale (rng: random.Random, current: typing.Optional[str] = None, recent: typing.Sequence[str] = ()) -> str:

	"""Pick a dissonant scale that is neither current nor recent (falls back to ``"diminished"``)."""

	chosen = _pick(DISSONANT_SCALES, list(recent) + ([current] if current else []), rng)
	return chosen if chosen is not None else "diminished"


def related_scale (target: str, rng: random.Random, current: typing.Optional[str] = None, recent: typing.Sequence[str] = ()) -> str:

	"""
	Pick a scale harmonically related to ``target``.

	Relations follow :data:`SCALE_RELATIONS`; unknown targets use
	:data:`DEFAULT_RELATIONS`.  When every relation is excluded a random scale
	is returned instead.
	"""

	related = SCALE_RELATIONS.get(target, DEFAULT_RELATIONS)
	chosen = _pick(related, list(recent) + ([current] if current else []), rng)

	if chosen is None:
		return random_scale(rng, current=current, recent=recent)

	return chosen
