"""Loop regeneration - connects the notes matrix to the pattern generators.

For one loop this reads the metadata, resolves its scale by name, picks a
generator by the loop's pattern weights, generates a row at the loop's
effective density and, when counterpoint is on and another loop is active,
moves colliding notes to free scale tones.  The complete row is built before
anything is written.
"""

import logging
import random
import typing

import evoloop.counterpoint
import evoloop.notes_matrix
import evoloop.pattern_generators
import evoloop.scales


logger = logging.getLogger(__name__)


class MelodicGenerator:

	"""
	Generate and write rows for loops in a :class:`~evoloop.notes_matrix.NotesMatrix`.

	Parameters:
		matrix: The store read from and written to.
		rng: Random source threaded through every generator call.
		counterpoint_enabled: Resolve pitch collisions with other active loops.
	"""

	def __init__ (
		self,
		matrix: evoloop.notes_matrix.NotesMatrix,
		rng: typing.Optional[random.Random] = None,
		counterpoint_enabled: bool = True
	) -> None:

		self.matrix = matrix
		self.rng = rng or random.Random()
		self.counterpoint_enabled = counterpoint_enabled

	def _options (self, pattern_type: str, start_offset: int) -> typing.Any:

		if pattern_type == "euclidean":
			return evoloop.pattern_generators.EuclideanOptions(start_offset=start_offset)

		if pattern_type == "scale":
			return evoloop.pattern_generators.ScaleOptions(start_offset=start_offset)

		return evoloop.pattern_generators.RandomOptions(start_offset=start_offset)

	def generate_loop_melody (
		self,
		loop_id: int,
		pattern_type: typing.Optional[str] = None,
		density: typing.Optional[float] = None,
		start_offset: int = 0,
		options: typing.Any = None
	) -> typing.Tuple[str, typing.List[typing.Optional[int]]]:

		"""
		Build a new row for ``loop_id`` without writing it.

		Returns ``(pattern_type, row)``.  Raises ``ValueError`` for an
		uninitialised loop, an unknown pattern type or an unknown scale.
		"""

		meta = self.matrix.get_metadata(loop_id)

		if meta is None:
			raise ValueError(f"Loop {loop_id} has not been initialised")

		intervals = evoloop.scales.get_scale(meta.scale)

		if pattern_type is None:
			pattern_type = evoloop.pattern_generators.choose_pattern_type(meta.pattern_probabilities, self.rng)

		if density is None:
			density = meta.effective_density

		density = max(0.0, min(1.0, density))

		if options is None:
			options = self._options(pattern_type, start_offset % meta.length)

		notes = evoloop.pattern_generators.generate_pattern(
			pattern_type,
			meta.length,
			intervals,
			meta.base_note,
			meta.note_range_min,
			meta.note_range_max,
			density,
			options = options,
			rng = self.rng
		)

		others = [other for other in self.matrix.active_loops() if other != loop_id]

		if self.counterpoint_enabled and others:
			resolved = evoloop.counterpoint.apply_counterpoint(
				notes,
				[self.matrix.get_loop_notes(other) for other in others],
				intervals,
				meta.base_note,
				meta.note_range_min,
				meta.note_range_max
			)
			moved = sum(1 for before, after in zip(notes, resolved) if before != after)
			if moved:
				logger.debug(f"Loop {loop_id}: counterpoint moved {moved} notes")
			notes = resolved

		return pattern_type, notes

	def regenerate_loop (
		self,
		loop_id: int,
		pattern_type: typing.Optional[str] = None,
		density: typing.Optional[float] = None,
		start_offset: int = 0
	) -> typing.List[typing.Optional[int]]:

		"""Generate and write a new row for ``loop_id``; returns the stored row."""

		chosen, notes = self.generate_loop_melody(loop_id, pattern_type=pattern_type, density=density, start_offset=start_offset)

		with self.matrix.batch():
			self.matrix.set_loop_notes(loop_id, notes)
			self.matrix.update_loop_metadata(loop_id, last_pattern=chosen)

		stored = self.matrix.get_loop_notes(loop_id)

		logger.debug(f"Loop {loop_id} regenerated with {chosen}: {sum(1 for note in stored if note is not None)}/{len(stored)} steps")

		return stored

	def regenerate_loops (self, loop_ids: typing.Iterable[int], start_offset: int = 0, pattern_type: typing.Optional[str] = None) -> typing.List[int]:

		"""
		Regenerate several loops independently.

		A loop that fails is logged and skipped; the others still regenerate.
		Returns the ids that were regenerated.
		"""

		done: typing.List[int] = []

		with self.matrix.batch():
			for loop_id in loop_ids:
				try:
					self.regenerate_loop(loop_id, pattern_type=pattern_type, start_offset=start_offset)
				except ValueError:
					logger.exception(f"Regeneration failed for loop {loop_id}")
					continue
				done.append(loop_id)

		return done
