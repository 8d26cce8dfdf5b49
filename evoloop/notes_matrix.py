"""The notes matrix - the single mutable store every component reads and writes.

A fixed grid of ``MAX_LOOPS`` rows by ``MAX_STEPS`` cells, each holding a MIDI
note or ``None``, plus one :class:`LoopMetadata` record per initialised loop.
Cells beyond a loop's ``length`` are never read.

All mutation goes through :class:`NotesMatrix` methods so two rules hold after
every call:

- ``len(get_loop_notes(loop_id)) == metadata.length``
- an initialised loop is never fully silent; a mutation that would silence it
  gets a fallback in-scale note written at step 0

Observers subscribe to ``matrix.events.on("changed", callback)`` and receive the
set of loop ids touched.  Inside :meth:`NotesMatrix.batch` notifications are
deferred and delivered once when the outermost batch ends.  A ``written``
event fires on every write, batch or not, for caches that must never serve a
stale value.
"""

import contextlib
import dataclasses
import logging
import math
import random
import time
import typing

import evoloop.constants
import evoloop.event_emitter
import evoloop.scales


logger = logging.getLogger(__name__)

Row = typing.List[typing.Optional[int]]


def _default_probabilities () -> typing.Dict[str, float]:

	return {"euclidean": 0.3, "scale": 0.3, "random": 0.4}


@dataclasses.dataclass
class LoopMetadata:

	"""
	Everything the core knows about one loop apart from its notes.

	The scale is stored by name and resolved through :func:`evoloop.scales.get_scale`
	wherever intervals are needed, so a registered scale can never go stale here.

	Attributes:
		is_active: Whether the loop plays and takes part in evolution.
		length: Steps in the loop's cycle (1 to ``MAX_STEPS``).
		scale: Registered scale name.
		base_note: MIDI root the scale intervals are measured from.
		note_range_min: Lowest note generators may write (24 to 96).
		note_range_max: Highest note generators may write (24 to 96).
		density_mode: ``"auto"`` follows the energy manager, ``"manual"`` is user-set.
		manual_density: Density used in manual mode.
		auto_density: Density used in auto mode, written by the energy manager.
		pattern_probabilities: Relative weights per generator name.
		generation_mode: ``"locked"`` vetoes every automatic mutation.
		last_pattern: Generator that produced the current row, if any.
		last_modified: Wall-clock time of the last write.
		volume: Output level (0.0-1.0), read by the energy manager and transport.
		pan: Stereo position (-1.0 to 1.0).
		delay_amount: Send level to a delay effect (0.0-1.0).
		reverb_amount: Send level to a reverb effect (0.0-1.0).
		octave_range: Octaves above the base note used for fallback notes.
		channel: MIDI channel (0-15) the transport plays this loop on.
		density: Observed fraction of sounding cells.  Derived, read-only.
	"""

	is_active: bool = False
	length: int = evoloop.constants.DEFAULT_LENGTH
	scale: str = evoloop.constants.DEFAULT_SCALE
	base_note: int = evoloop.constants.DEFAULT_BASE_NOTE
	note_range_min: int = evoloop.constants.MIN_NOTE
	note_range_max: int = evoloop.constants.MAX_NOTE
	density_mode: str = "auto"
	manual_density: float = evoloop.constants.DEFAULT_DENSITY
	auto_density: float = evoloop.constants.DEFAULT_DENSITY
	pattern_probabilities: typing.Dict[str, float] = dataclasses.field(default_factory=_default_probabilities)
	generation_mode: str = "auto"
	last_pattern: typing.Optional[str] = None
	last_modified: float = 0.0
	volume: float = evoloop.constants.DEFAULT_VOLUME
	pan: float = 0.0
	delay_amount: float = 0.0
	reverb_amount: float = 0.0
	octave_range: int = evoloop.constants.DEFAULT_OCTAVE_RANGE
	channel: int = 0
	density: float = 0.0

	@property
	def effective_density (self) -> float:

		"""The density generation should aim for, chosen by ``density_mode``."""

		return self.manual_density if self.density_mode == "manual" else self.auto_density

	@property
	def is_locked (self) -> bool:
		return self.generation_mode == "locked"


METADATA_FIELDS = tuple(field.name for field in dataclasses.fields(LoopMetadata))

# Fields the matrix maintains itself.
DERIVED_FIELDS = ("density",)

# Older presets stored metadata with camelCase keys.
LEGACY_FIELDS = {
	"isActive": "is_active",
	"baseNote": "base_note",
	"noteRangeMin": "note_range_min",
	"noteRangeMax": "note_range_max",
	"densityMode": "density_mode",
	"manualDensity": "manual_density",
	"autoDensity": "auto_density",
	"patternProbabilities": "pattern_probabilities",
	"generationMode": "generation_mode",
	"lastPattern": "last_pattern",
	"lastModified": "last_modified",
	"delayAmount": "delay_amount",
	"reverbAmount": "reverb_amount",
	"octaveRange": "octave_range",
}


def _clamp_unit (value: typing.Any) -> float:
	return max(0.0, min(1.0, float(value)))


def _clamp_note (value: typing.Any) -> int:
	return max(evoloop.constants.MIN_NOTE, min(evoloop.constants.MAX_NOTE, int(round(value))))


def normalise_patch (patch: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:

	"""
	Validate and clamp a partial metadata update.

	Numeric fields are clamped into their documented ranges.  Unknown fields,
	derived fields, unknown scale names, unknown modes and negative pattern
	weights raise ``ValueError``.
	"""

	clean: typing.Dict[str, typing.Any] = {}

	for key, value in patch.items():

		if key in DERIVED_FIELDS:
			raise ValueError(f"Loop metadata field {key!r} is derived from the notes and cannot be set")

		if key not in METADATA_FIELDS:
			raise ValueError(f"Unknown loop metadata field {key!r}. Available: {[f for f in METADATA_FIELDS if f not in DERIVED_FIELDS]}")

		if key == "scale":
			evoloop.scales.get_scale(value)
			clean[key] = value

		elif key == "length":
			clean[key] = max(1, min(evoloop.constants.MAX_STEPS, int(value)))

		elif key in ("base_note", "note_range_min", "note_range_max"):
			clean[key] = _clamp_note(value)

		elif key in ("manual_density", "auto_density", "volume", "delay_amount", "reverb_amount"):
			clean[key] = _clamp_unit(value)

		elif key == "pan":
			clean[key] = max(-1.0, min(1.0, float(value)))

		elif key == "octave_range":
			clean[key] = max(1, min(4, int(value)))

		elif key == "channel":
			clean[key] = max(0, min(15, int(value)))

		elif key == "density_mode":
			if value not in evoloop.constants.DENSITY_MODES:
				raise ValueError(f"Unknown density mode {value!r}. Available: {list(evoloop.constants.DENSITY_MODES)}")
			clean[key] = value

		elif key == "generation_mode":
			if value not in evoloop.constants.GENERATION_MODES:
				raise ValueError(f"Unknown generation mode {value!r}. Available: {list(evoloop.constants.GENERATION_MODES)}")
			clean[key] = value

		elif key == "pattern_probabilities":
			probabilities: typing.Dict[str, float] = {}
			for name, weight in dict(value).items():
				if name not in evoloop.constants.PATTERN_TYPES:
					raise ValueError(f"Unknown pattern type {name!r}. Available: {list(evoloop.constants.PATTERN_TYPES)}")
				if weight < 0:
					raise ValueError(f"Pattern probability for {name!r} must be non-negative, got {weight}")
				probabilities[name] = float(weight)
			clean[key] = probabilities

		elif key == "last_pattern":
			if value is not None and value not in evoloop.constants.PATTERN_TYPES:
				raise ValueError(f"Unknown pattern type {value!r}. Available: {list(evoloop.constants.PATTERN_TYPES)}")
			clean[key] = value

		elif key == "is_active":
			clean[key] = bool(value)

		else:
			clean[key] = value

	return clean


class NotesMatrix:

	"""
	Owns the note grid and loop metadata.

	Parameters:
		current_scale: Scale name new loops take when none is given.
		base_note: Root new loops take when none is given.
		rng: Random source for fallback notes, resize fills and mutation.
		clock: Returns the wall-clock time stamped into ``last_modified``.

	Example:
		```python
		matrix = NotesMatrix(rng=random.Random(1))
		matrix.initialize_loop(0, scale="dorian", length=8)
		matrix.events.on("changed", lambda loop_ids: print(sorted(loop_ids)))

		with matrix.batch():
			matrix.set_loop_note(0, 0, 62)
			matrix.set_loop_note(0, 4, 65)
		# prints [0] once
		```
	"""

	def __init__ (
		self,
		current_scale: str = evoloop.constants.DEFAULT_SCALE,
		base_note: int = evoloop.constants.DEFAULT_BASE_NOTE,
		rng: typing.Optional[random.Random] = None,
		clock: typing.Callable[[], float] = time.time
	) -> None:

		evoloop.scales.get_scale(current_scale)

		self.current_scale = current_scale
		self.base_note = _clamp_note(base_note)
		self.rng = rng or random.Random()
		self.clock = clock
		self.events = evoloop.event_emitter.EventEmitter()

		self._notes: typing.List[Row] = [[None] * evoloop.constants.MAX_STEPS for _ in range(evoloop.constants.MAX_LOOPS)]
		self._metadata: typing.Dict[int, LoopMetadata] = {}

		self._batch_depth = 0
		self._pending: typing.Set[int] = set()

	# --- Notification ---

	def _touch (self, loop_ids: typing.Iterable[int]) -> None:

		"""Record a change, emitting now unless a batch is open."""

		touched = set(loop_ids)

		if not touched:
			return

		self.events.emit("written", touched)

		if self._batch_depth > 0:
			self._pending |= touched
			return

		self.events.emit("changed", touched)

	def begin_batch (self) -> None:

		"""Defer ``changed`` notifications until the matching :meth:`end_batch`."""

		self._batch_depth += 1

	def end_batch (self) -> None:

		"""
		Close a batch.  The outermost close emits one ``changed`` event carrying
		every loop id touched inside; an empty batch emits nothing.
		"""

		if self._batch_depth == 0:
			raise RuntimeError("end_batch() called without a matching begin_batch()")

		self._batch_depth -= 1

		if self._batch_depth == 0 and self._pending:
			touched = self._pending
			self._pending = set()
			self.events.emit("changed", touched)

	@contextlib.contextmanager
	def batch (self) -> typing.Iterator["NotesMatrix"]:

		"""Context manager around :meth:`begin_batch` / :meth:`end_batch`."""

		self.begin_batch()

		try:
			yield self

		finally:
			self.end_batch()

	@property
	def in_batch (self) -> bool:
		return self._batch_depth > 0

	# --- Loop metadata ---

	def _check_id (self, loop_id: int) -> None:

		if not isinstance(loop_id, int) or not 0 <= loop_id < evoloop.constants.MAX_LOOPS:
			raise ValueError(f"Loop id {loop_id!r} out of range 0..{evoloop.constants.MAX_LOOPS - 1}")

	def _meta (self, loop_id: int) -> LoopMetadata:

		"""Metadata for a loop, initialising it with defaults on first use."""

		self._check_id(loop_id)

		if loop_id not in self._metadata:
			self.initialize_loop(loop_id)

		return self._metadata[loop_id]

	def has_loop (self, loop_id: int) -> bool:

		"""True once ``initialize_loop`` (or any write) has created the loop."""

		self._check_id(loop_id)
		return loop_id in self._metadata

	def get_metadata (self, loop_id: int) -> typing.Optional[LoopMetadata]:

		"""
		A copy of the loop's metadata, or None for an uninitialised loop.

		Changes to the copy do nothing; use :meth:`update_loop_metadata`.
		"""

		self._check_id(loop_id)

		meta = self._metadata.get(loop_id)

		if meta is None:
			return None

		return dataclasses.replace(meta, pattern_probabilities=dict(meta.pattern_probabilities))

	def initialize_loop (self, loop_id: int, **config: typing.Any) -> LoopMetadata:

		"""
		Create or reconfigure a loop's metadata.

		Missing fields take defaults (the matrix's current scale and base note,
		channel = loop id mod 16).  An existing loop keeps its notes; a new
		length resizes its row as :meth:`resize_loop` does.  Returns a copy of
		the new metadata.
		"""

		self._check_id(loop_id)

		values: typing.Dict[str, typing.Any] = {
			"scale": self.current_scale,
			"base_note": self.base_note,
			"channel": loop_id % 16,
		}
		values.update(normalise_patch(config))

		meta = LoopMetadata(**values)
		meta.last_modified = self.clock()

		if meta.note_range_min > meta.note_range_max:
			meta.note_range_min, meta.note_range_max = meta.note_range_max, meta.note_range_min

		previous = self._metadata.get(loop_id)
		new_length = meta.length

		if previous is not None:
			meta.length = previous.length

		self._metadata[loop_id] = meta
		self._refresh_density(loop_id)

		if new_length != meta.length:
			self.resize_loop(loop_id, new_length)

		if meta.is_active:
			self._ensure_note(loop_id)

		logger.debug(f"Loop {loop_id} initialised: scale={meta.scale} base={meta.base_note} length={meta.length}")

		self._touch([loop_id])

		return self.get_metadata(loop_id)  # type: ignore[return-value]

	def update_loop_metadata (self, loop_id: int, patch: typing.Optional[typing.Dict[str, typing.Any]] = None, **fields: typing.Any) -> None:

		"""
		Apply a partial update to a loop's metadata.

		Values are validated before anything is written, so a rejected patch
		leaves the loop unchanged.  A new ``length`` resizes the row;
		activating a silent loop gives it a fallback note.
		"""

		meta = self._meta(loop_id)

		merged = dict(patch or {})
		merged.update(fields)
		clean = normalise_patch(merged)

		length = clean.pop("length", None)

		if "pattern_probabilities" in clean:
			probabilities = dict(meta.pattern_probabilities)
			probabilities.update(clean["pattern_probabilities"])
			clean["pattern_probabilities"] = probabilities

		low = clean.get("note_range_min", meta.note_range_min)
		high = clean.get("note_range_max", meta.note_range_max)

		if low > high:
			clean["note_range_min"], clean["note_range_max"] = high, low

		for key, value in clean.items():
			setattr(meta, key, value)

		meta.last_modified = self.clock()

		if length is not None and length != meta.length:
			self.resize_loop(loop_id, length)

		if meta.is_active:
			self._ensure_note(loop_id)

		self._touch([loop_id])

	def set_loop_active (self, loop_id: int, active: bool) -> None:

		"""Activate or deactivate a loop."""

		self.update_loop_metadata(loop_id, is_active=bool(active))

	def active_loops (self) -> typing.List[int]:

		"""Active loop ids in ascending order."""

		return sorted(loop_id for loop_id, meta in self._metadata.items() if meta.is_active)

	def loop_ids (self) -> typing.List[int]:

		"""Every initialised loop id in ascending order."""

		return sorted(self._metadata)

	def get_effective_density (self, loop_id: int) -> float:

		"""``manual_density`` in manual mode, else ``auto_density``.  Computed on every call."""

		return self._meta(loop_id).effective_density

	# --- Notes ---

	def get_loop_notes (self, loop_id: int) -> Row:

		"""A copy of the loop's first ``length`` cells (empty for an uninitialised loop)."""

		self._check_id(loop_id)

		meta = self._metadata.get(loop_id)

		if meta is None:
			return []

		return list(self._notes[loop_id][:meta.length])

	def get_note (self, loop_id: int, step: int) -> typing.Optional[int]:

		"""The note at ``step``, wrapping by the loop length."""

		notes = self.get_loop_notes(loop_id)

		if not notes:
			return None

		return notes[step % len(notes)]

	def set_loop_notes (self, loop_id: int, notes: typing.Sequence[typing.Optional[int]]) -> None:

		"""
		Replace a loop's row.

		The first ``min(len(notes), MAX_STEPS)`` values are written and ``length``
		follows.  Notes are clamped to the MIDI register.  An empty sequence
		leaves a one-step loop holding a fallback note.
		"""

		meta = self._meta(loop_id)
		count = max(1, min(len(notes), evoloop.constants.MAX_STEPS))

		row: Row = [None] * evoloop.constants.MAX_STEPS

		for step in range(min(len(notes), count)):
			note = notes[step]
			row[step] = None if note is None else evoloop.scales.clamp_to_midi_range(int(note))

		self._notes[loop_id] = row
		meta.length = count

		self._after_write(loop_id)

	def set_loop_note (self, loop_id: int, step: int, note: typing.Optional[int]) -> None:

		"""Write one cell.  ``step`` must lie inside the loop's length."""

		meta = self._meta(loop_id)

		if not 0 <= step < meta.length:
			raise ValueError(f"Step {step} out of range 0..{meta.length - 1} for loop {loop_id}")

		self._notes[loop_id][step] = None if note is None else evoloop.scales.clamp_to_midi_range(int(note))

		self._after_write(loop_id)

	def clear_loop_note (self, loop_id: int, step: int) -> None:

		"""Silence one cell.  Clearing the last note puts a fallback note at step 0."""

		self.set_loop_note(loop_id, step, None)

	def resize_loop (self, loop_id: int, new_length: int) -> Row:

		"""
		Change a loop's length, keeping the notes that still fit.

		Each added step sounds with probability equal to the loop's effective
		density and, when it does, gets a random in-scale note.
		"""

		meta = self._meta(loop_id)
		target = max(1, min(evoloop.constants.MAX_STEPS, int(new_length)))
		current = self.get_loop_notes(loop_id)
		density = meta.effective_density

		if target <= len(current):
			notes = current[:target]

		else:
			notes = list(current)
			for _ in range(target - len(current)):
				notes.append(self._random_note(meta) if self.rng.random() < density else None)

		logger.debug(f"Loop {loop_id} resized {len(current)} -> {target} at density {density:.2f}")

		self.set_loop_notes(loop_id, notes)

		return self.get_loop_notes(loop_id)

	def _random_note (self, meta: LoopMetadata) -> int:

		"""A random note of the loop's scale inside its range, favouring its octave span."""

		intervals = evoloop.scales.get_scale(meta.scale)
		candidates = evoloop.scales.possible_notes(intervals, meta.base_note, meta.note_range_min, meta.note_range_max)

		if candidates:
			upper = meta.base_note + 12 * meta.octave_range
			preferred = [note for note in candidates if meta.base_note <= note < upper]
			return self.rng.choice(preferred or candidates)

		# Range holds no scale tone: fall back to the clamped register.
		note = meta.base_note + self.rng.choice(intervals) + 12 * self.rng.randrange(meta.octave_range)
		return evoloop.scales.clamp_to_midi_range(note)

	def _refresh_density (self, loop_id: int) -> None:

		meta = self._metadata[loop_id]
		row = self._notes[loop_id][:meta.length]
		meta.density = sum(1 for note in row if note is not None) / len(row) if row else 0.0

	def _ensure_note (self, loop_id: int) -> None:

		"""Write a fallback note at step 0 if the loop is silent."""

		meta = self._metadata[loop_id]

		if any(note is not None for note in self._notes[loop_id][:meta.length]):
			return

		fallback = self._random_note(meta)
		self._notes[loop_id][0] = fallback
		self._refresh_density(loop_id)

		logger.debug(f"Loop {loop_id} would be silent, fallback note {evoloop.scales.note_name(fallback)} at step 0")

	def _after_write (self, loop_id: int) -> None:

		"""Bookkeeping shared by every note mutation."""

		meta = self._metadata[loop_id]

		# Cells past the end are never read; keep them empty.
		for step in range(meta.length, evoloop.constants.MAX_STEPS):
			self._notes[loop_id][step] = None

		self._refresh_density(loop_id)
		self._ensure_note(loop_id)
		meta.last_modified = self.clock()

		self._touch([loop_id])

	# --- Transformations ---

	def quantize_loop (self, loop_id: int, scale: typing.Optional[str] = None) -> bool:

		"""
		Snap every note of a loop to ``scale`` (default: the loop's own) and store
		that scale name on the loop.  Returns False for an uninitialised loop.
		"""

		self._check_id(loop_id)

		if loop_id not in self._metadata:
			return False

		meta = self._metadata[loop_id]
		target = scale or meta.scale
		intervals = evoloop.scales.get_scale(target)

		changed = 0

		for step in range(meta.length):

			note = self._notes[loop_id][step]

			if note is None:
				continue

			snapped = evoloop.scales.quantize_to_scale(note, intervals, meta.base_note, meta.note_range_min, meta.note_range_max)

			if snapped != note:
				changed += 1

			self._notes[loop_id][step] = snapped

		meta.scale = target

		logger.debug(f"Loop {loop_id} quantized to {target}: {changed} notes moved")

		self._after_write(loop_id)

		return True

	def quantize_all_active_loops (self, scale: str, include_locked: bool = True) -> typing.List[int]:

		"""
		Make ``scale`` the current scale and quantize active loops to it.

		The scale is resolved before any loop changes.  Returns the quantized ids.
		"""

		evoloop.scales.get_scale(scale)

		self.current_scale = scale
		quantized: typing.List[int] = []

		with self.batch():
			for loop_id in self.active_loops():
				if not include_locked and self._metadata[loop_id].is_locked:
					continue
				self.quantize_loop(loop_id, scale)
				quantized.append(loop_id)

		return quantized

	def transpose_loop (self, loop_id: int, semitones: int) -> bool:

		"""Shift every note, clamp to the loop's range and snap back onto its scale."""

		self._check_id(loop_id)

		if loop_id not in self._metadata:
			return False

		meta = self._metadata[loop_id]
		intervals = evoloop.scales.get_scale(meta.scale)

		for step in range(meta.length):

			note = self._notes[loop_id][step]

			if note is None:
				continue

			shifted = max(meta.note_range_min, min(meta.note_range_max, note + semitones))
			self._notes[loop_id][step] = evoloop.scales.quantize_to_scale(shifted, intervals, meta.base_note, meta.note_range_min, meta.note_range_max)

		logger.debug(f"Loop {loop_id} transposed {semitones:+d}")

		self._after_write(loop_id)

		return True

	def rotate_loop (self, loop_id: int, steps: int) -> bool:

		"""Rotate the row right by ``steps`` (negative rotates left)."""

		self._check_id(loop_id)

		if loop_id not in self._metadata:
			return False

		notes = self.get_loop_notes(loop_id)
		length = len(notes)

		self.set_loop_notes(loop_id, [notes[(i - steps) % length] for i in range(length)])

		return True

	def invert_loop (self, loop_id: int) -> bool:

		"""Reverse the row in time."""

		self._check_id(loop_id)

		if loop_id not in self._metadata:
			return False

		self.set_loop_notes(loop_id, list(reversed(self.get_loop_notes(loop_id))))

		return True

	def mutate_loop (self, loop_id: int, intensity: float = 0.3) -> bool:

		"""
		Replace the pitch of up to ``max(1, floor(length * intensity))`` random
		sounding steps with other notes of the loop's scale.  Rests stay rests.
		"""

		self._check_id(loop_id)

		if loop_id not in self._metadata:
			return False

		meta = self._metadata[loop_id]
		intensity = max(0.0, min(1.0, intensity))
		changes = max(1, int(math.floor(meta.length * intensity)))

		for _ in range(changes):
			step = self.rng.randrange(meta.length)
			if self._notes[loop_id][step] is not None:
				self._notes[loop_id][step] = self._random_note(meta)

		logger.debug(f"Loop {loop_id} mutated: {changes} attempts at intensity {intensity:.2f}")

		self._after_write(loop_id)

		return True

	def copy_loop (self, source_id: int, target_id: int) -> bool:

		"""Copy notes and metadata from one loop to another (the target keeps its channel)."""

		self._check_id(source_id)
		self._check_id(target_id)

		if source_id not in self._metadata:
			return False

		source = self._metadata[source_id]
		channel = self._metadata[target_id].channel if target_id in self._metadata else target_id % 16

		self._metadata[target_id] = dataclasses.replace(
			source,
			pattern_probabilities = dict(source.pattern_probabilities),
			channel = channel
		)

		self._notes[target_id] = list(self._notes[source_id])
		self._after_write(target_id)

		return True

	# --- Inspection ---

	def get_density_metrics (self, loop_id: int) -> typing.Dict[str, typing.Any]:

		"""Note count, length and observed density of a loop."""

		notes = self.get_loop_notes(loop_id)
		count = sum(1 for note in notes if note is not None)

		return {
			"note_count": count,
			"length": len(notes),
			"density": count / len(notes) if notes else 0.0,
		}

	def get_stats (self) -> typing.Dict[str, typing.Any]:

		"""Summary counts across the active loops."""

		active = self.active_loops()
		per_loop = {loop_id: self.get_density_metrics(loop_id) for loop_id in active}
		total_notes = sum(metrics["note_count"] for metrics in per_loop.values())
		total_steps = sum(metrics["length"] for metrics in per_loop.values())

		return {
			"active_loops": len(active),
			"total_notes": total_notes,
			"notes_per_loop": per_loop,
			"average_density": total_notes / total_steps if total_steps else 0.0,
		}

	# --- Whole-matrix operations ---

	def clear (self) -> None:

		"""Drop every note and every loop's metadata."""

		touched = set(self._metadata)

		self._notes = [[None] * evoloop.constants.MAX_STEPS for _ in range(evoloop.constants.MAX_LOOPS)]
		self._metadata.clear()

		self._touch(touched)

	def export_state (self) -> typing.Dict[str, typing.Any]:

		"""Plain, JSON-friendly copy of the matrix."""

		return {
			"notes": {str(loop_id): self.get_loop_notes(loop_id) for loop_id in self.loop_ids()},
			"metadata": {str(loop_id): dataclasses.asdict(meta) for loop_id, meta in sorted(self._metadata.items())},
			"state": {
				"current_scale": self.current_scale,
				"base_note": self.base_note,
				"active_loops": self.active_loops(),
			},
		}

	def import_state (self, data: typing.Optional[typing.Dict[str, typing.Any]], fallback_scale: typing.Optional[str] = None) -> None:

		"""
		Replace the matrix with exported data.

		Tolerates older shapes: camelCase metadata keys, notes stored as a list
		of full rows, a legacy ``density`` value, scale names from older
		releases, and missing fields (defaults apply).  Unknown scales, including
		interval lists, fall back to ``fallback_scale`` (default: the current
		scale) with a warning.  Unknown metadata fields are ignored.
		"""

		data = data or {}
		fallback = fallback_scale or self.current_scale

		state = data.get("state") or {}
		current = evoloop.scales.resolve_legacy_name(state.get("current_scale", state.get("currentScale")))

		if current is None and ("current_scale" in state or "currentScale" in state):
			logger.warning(f"Imported current scale {state.get('current_scale', state.get('currentScale'))!r} is unknown, keeping {fallback}")

		raw_notes = data.get("notes") or {}

		if isinstance(raw_notes, list):
			raw_notes = {str(loop_id): row for loop_id, row in enumerate(raw_notes)}

		metadata: typing.Dict[int, LoopMetadata] = {}
		notes: typing.Dict[int, typing.List[typing.Optional[int]]] = {}

		for key, raw_meta in (data.get("metadata") or {}).items():

			try:
				loop_id = int(key)
			except (TypeError, ValueError):
				logger.warning(f"Ignoring imported loop with id {key!r}")
				continue

			if not 0 <= loop_id < evoloop.constants.MAX_LOOPS:
				logger.warning(f"Ignoring imported loop {loop_id}: out of range")
				continue

			metadata[loop_id] = self._import_metadata(loop_id, raw_meta or {}, current or fallback)
			notes[loop_id] = list(raw_notes.get(str(loop_id), raw_notes.get(loop_id, [])) or [])

		for loop_id in state.get("active_loops", state.get("activeLoops", None)) or []:
			if int(loop_id) in metadata:
				metadata[int(loop_id)].is_active = True

		touched = set(self._metadata) | set(metadata)

		with self.batch():

			self.current_scale = current or fallback
			self.base_note = _clamp_note(state.get("base_note", state.get("globalBaseNote", self.base_note)))
			self._notes = [[None] * evoloop.constants.MAX_STEPS for _ in range(evoloop.constants.MAX_LOOPS)]
			self._metadata = metadata

			for loop_id, meta in metadata.items():
				row = notes[loop_id][:meta.length]
				row += [None] * (meta.length - len(row))
				self._notes[loop_id] = [None if note is None else evoloop.scales.clamp_to_midi_range(int(note)) for note in row] + [None] * (evoloop.constants.MAX_STEPS - meta.length)
				self._refresh_density(loop_id)

				# Stored inactive loops may be silent; active ones are repaired.
				if meta.is_active:
					self._ensure_note(loop_id)

			self._touch(touched)

		logger.info(f"Matrix imported: {len(metadata)} loops, {len(self.active_loops())} active, scale {self.current_scale}")

	def _import_metadata (self, loop_id: int, raw: typing.Dict[str, typing.Any], fallback_scale: str) -> LoopMetadata:

		"""Build metadata from a stored dict, repairing what can be repaired."""

		values: typing.Dict[str, typing.Any] = {}

		for key, value in raw.items():
			values[LEGACY_FIELDS.get(key, key)] = value

		legacy_density = values.pop("density", None)

		if legacy_density is not None and "auto_density" not in values:
			values["auto_density"] = legacy_density

		scale = evoloop.scales.resolve_legacy_name(values.get("scale"))

		if scale is None:
			if "scale" in values:
				logger.warning(f"Loop {loop_id}: stored scale {values['scale']!r} is unknown, using {fallback_scale}")
			scale = fallback_scale

		values["scale"] = scale

		known = {key: value for key, value in values.items() if key in METADATA_FIELDS and value is not None}
		known.setdefault("channel", loop_id % 16)

		probabilities = known.get("pattern_probabilities")

		if probabilities is not None:
			known["pattern_probabilities"] = {
				name: max(0.0, float(weight))
				for name, weight in dict(probabilities).items()
				if name in evoloop.constants.PATTERN_TYPES
			} or _default_probabilities()

		for key in ("density_mode", "generation_mode", "last_pattern"):
			allowed = {
				"density_mode": evoloop.constants.DENSITY_MODES,
				"generation_mode": evoloop.constants.GENERATION_MODES,
				"last_pattern": evoloop.constants.PATTERN_TYPES,
			}[key]
			if key in known and known[key] not in allowed:
				logger.warning(f"Loop {loop_id}: ignoring stored {key} {known[key]!r}")
				del known[key]

		meta = LoopMetadata(**normalise_patch(known))

		if meta.note_range_min > meta.note_range_max:
			meta.note_range_min, meta.note_range_max = meta.note_range_max, meta.note_range_min

		return meta
