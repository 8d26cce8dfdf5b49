"""Cross-loop pitch collision avoidance.

Two loops sounding the same MIDI note on the same step blur into one voice.
The resolver nudges a candidate note to the nearest free scale tone at that
step.  Each step is resolved on its own; there is no search across steps.
"""

import logging
import typing

import evoloop.scales


logger = logging.getLogger(__name__)

NoteRow = typing.Sequence[typing.Optional[int]]


def analyze_occupied_notes (other_loops: typing.Iterable[NoteRow], step: int) -> typing.Set[int]:

	"""
	Collect the notes other loops sound at ``step``.

	Each row is read at ``step % len(row)`` so loops of different lengths line
	up the way they do during playback.  Empty rows are skipped.
	"""

	occupied: typing.Set[int] = set()

	for row in other_loops:

		if not row:
			continue

		note = row[step % len(row)]

		if note is not None:
			occupied.add(note)

	return occupied


def resolve_conflict (
	candidate_note: int,
	occupied_notes: typing.Collection[int],
	scale_intervals: typing.Sequence[int],
	base_note: int,
	note_range_min: int,
	note_range_max: int
) -> int:

	"""
	Return ``candidate_note``, or the nearest free in-scale note if it is taken.

	Distance is absolute semitones from the candidate.  On a tie the lower note
	wins.  When every in-range scale tone is occupied the candidate is returned
	unchanged and the collision is accepted.
	"""

	if candidate_note not in occupied_notes:
		return candidate_note

	alternatives = [
		note
		for note in evoloop.scales.possible_notes(scale_intervals, base_note, note_range_min, note_range_max)
		if note not in occupied_notes
	]

	if not alternatives:
		logger.debug(f"Counterpoint: note {candidate_note} occupied and no free alternative, keeping it")
		return candidate_note

	chosen = min(alternatives, key=lambda note: (abs(note - candidate_note), note))

	logger.debug(f"Counterpoint: note {candidate_note} occupied, moved to {chosen}")

	return chosen


def apply_counterpoint (
	notes: NoteRow,
	other_loops: typing.Sequence[NoteRow],
	scale_intervals: typing.Sequence[int],
	base_note: int,
	note_range_min: int,
	note_range_max: int
) -> typing.List[typing.Optional[int]]:

	"""Resolve every sounding step of ``notes`` against ``other_loops`` and return a new row."""

	resolved: typing.List[typing.Optional[int]] = []

	for step, note in enumerate(notes):

		if note is None:
			resolved.append(None)
			continue

		occupied = analyze_occupied_notes(other_loops, step)
		resolved.append(resolve_conflict(note, occupied, scale_intervals, base_note, note_range_min, note_range_max))

	return resolved


def validate_counterpoint (notes: NoteRow, other_loops: typing.Sequence[NoteRow]) -> typing.List[typing.Tuple[int, int, int]]:

	"""
	List every collision between ``notes`` and ``other_loops``.

	Returns ``(step, note, other_index)`` tuples; an empty list means the row
	is collision-free.
	"""

	collisions: typing.List[typing.Tuple[int, int, int]] = []

	for step, note in enumerate(notes):

		if note is None:
			continue

		for other_index, row in enumerate(other_loops):
			if row and row[step % len(row)] == note:
				collisions.append((step, note, other_index))

	return collisions
