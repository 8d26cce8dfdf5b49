import random
import typing

import pytest

import evoloop.constants
import evoloop.notes_matrix
import evoloop.scales


def _matrix (seed: int = 1, **kwargs: typing.Any) -> evoloop.notes_matrix.NotesMatrix:
	return evoloop.notes_matrix.NotesMatrix(rng=random.Random(seed), clock=lambda: 0.0, **kwargs)


def _record (matrix: evoloop.notes_matrix.NotesMatrix) -> typing.List[typing.Set[int]]:

	"""Collect every ``changed`` notification."""

	events: typing.List[typing.Set[int]] = []
	matrix.events.on("changed", events.append)

	return events


def _in_scale (note: int, scale: str, base_note: int) -> bool:
	return (note - base_note) % 12 in evoloop.scales.get_scale(scale)


# --- Initialisation and metadata ---


def test_initialize_loop_defaults () -> None:

	matrix = _matrix(current_scale="dorian", base_note=50)
	meta = matrix.initialize_loop(3)

	assert meta.scale == "dorian"
	assert meta.base_note == 50
	assert meta.channel == 3
	assert meta.length == evoloop.constants.DEFAULT_LENGTH
	assert meta.pattern_probabilities == {"euclidean": 0.3, "scale": 0.3, "random": 0.4}
	assert matrix.has_loop(3)
	assert len(matrix.get_loop_notes(3)) == meta.length


def test_initialize_active_loop_is_never_silent () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True, scale="minor", base_note=57)

	notes = [note for note in matrix.get_loop_notes(0) if note is not None]

	assert len(notes) == 1
	assert _in_scale(notes[0], "minor", 57)


def test_uninitialised_loop () -> None:

	matrix = _matrix()

	assert matrix.get_metadata(4) is None
	assert matrix.get_loop_notes(4) == []
	assert not matrix.has_loop(4)


def test_get_metadata_returns_a_copy () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0)

	copy = matrix.get_metadata(0)
	copy.volume = 0.99
	copy.pattern_probabilities["scale"] = 9.0

	meta = matrix.get_metadata(0)

	assert meta.volume == evoloop.constants.DEFAULT_VOLUME
	assert meta.pattern_probabilities["scale"] == 0.3


@pytest.mark.parametrize("loop_id", [-1, 16, 99])
def test_out_of_range_loop_id_raises (loop_id: int) -> None:

	matrix = _matrix()

	with pytest.raises(ValueError):
		matrix.initialize_loop(loop_id)

	with pytest.raises(ValueError):
		matrix.get_loop_notes(loop_id)

	with pytest.raises(ValueError):
		matrix.set_loop_notes(loop_id, [60])


def test_unknown_scale_leaves_metadata_unchanged () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, scale="lydian")

	with pytest.raises(ValueError, match="Available"):
		matrix.update_loop_metadata(0, scale="klingon", volume=0.9)

	meta = matrix.get_metadata(0)

	assert meta.scale == "lydian"
	assert meta.volume == evoloop.constants.DEFAULT_VOLUME


def test_unknown_and_derived_fields_are_rejected () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0)

	with pytest.raises(ValueError):
		matrix.update_loop_metadata(0, tempo=120)

	with pytest.raises(ValueError):
		matrix.update_loop_metadata(0, density=0.9)


def test_metadata_values_are_clamped () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0)
	matrix.update_loop_metadata(0, volume=1.7, manual_density=-0.2, pan=-3, channel=40, note_range_min=10, note_range_max=120)

	meta = matrix.get_metadata(0)

	assert meta.volume == 1.0
	assert meta.manual_density == 0.0
	assert meta.pan == -1.0
	assert meta.channel == 15
	assert (meta.note_range_min, meta.note_range_max) == (24, 96)


def test_inverted_note_range_is_swapped () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0)
	matrix.update_loop_metadata(0, note_range_min=80, note_range_max=40)

	meta = matrix.get_metadata(0)

	assert (meta.note_range_min, meta.note_range_max) == (40, 80)


def test_pattern_probabilities_merge () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0)
	matrix.update_loop_metadata(0, pattern_probabilities={"scale": 1.0})

	assert matrix.get_metadata(0).pattern_probabilities == {"euclidean": 0.3, "scale": 1.0, "random": 0.4}

	with pytest.raises(ValueError):
		matrix.update_loop_metadata(0, pattern_probabilities={"random": -0.5})


def test_effective_density_follows_mode () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, manual_density=0.8, auto_density=0.2)

	assert matrix.get_effective_density(0) == pytest.approx(0.2)

	matrix.update_loop_metadata(0, density_mode="manual")

	assert matrix.get_effective_density(0) == pytest.approx(0.8)


def test_active_loops_sorted () -> None:

	matrix = _matrix()

	for loop_id in (5, 1, 3):
		matrix.initialize_loop(loop_id, is_active=True)

	matrix.initialize_loop(2)

	assert matrix.active_loops() == [1, 3, 5]
	assert matrix.loop_ids() == [1, 2, 3, 5]


# --- Length invariant ---


def test_set_loop_notes_sets_length () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60, None, 64])

	assert matrix.get_loop_notes(0) == [60, None, 64]
	assert matrix.get_metadata(0).length == 3


def test_set_loop_notes_truncates_to_max_steps () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60] * 40)

	assert len(matrix.get_loop_notes(0)) == evoloop.constants.MAX_STEPS


def test_set_loop_notes_empty_keeps_one_step () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [])

	notes = matrix.get_loop_notes(0)

	assert len(notes) == 1
	assert notes[0] is not None


def test_length_follows_metadata_update () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	matrix.update_loop_metadata(0, length=7)

	assert len(matrix.get_loop_notes(0)) == 7

	matrix.update_loop_metadata(0, length=50)

	assert len(matrix.get_loop_notes(0)) == evoloop.constants.MAX_STEPS


def test_notes_are_clamped_to_register () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [12, 110, 60])

	assert matrix.get_loop_notes(0) == [24, 86, 60]


def test_get_note_wraps () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60, None, 64, None])

	assert matrix.get_note(0, 6) == 64
	assert matrix.get_note(1, 0) is None


def test_set_loop_note_out_of_range_step () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60, None])

	with pytest.raises(ValueError):
		matrix.set_loop_note(0, 2, 62)


# --- Silence invariant ---


def test_writing_all_rests_leaves_fallback_note () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True, scale="dorian", base_note=62)
	matrix.set_loop_notes(0, [None] * 8)

	notes = matrix.get_loop_notes(0)

	assert len(notes) == 8
	assert notes[0] is not None
	assert all(note is None for note in notes[1:])
	assert _in_scale(notes[0], "dorian", 62)


def test_clearing_last_note_leaves_fallback () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	matrix.set_loop_notes(0, [None, None, 67, None])
	matrix.clear_loop_note(0, 2)

	notes = matrix.get_loop_notes(0)

	assert notes[0] is not None
	assert notes[2] is None


@pytest.mark.parametrize("seed", range(5))
def test_active_loops_never_silent_after_mutations (seed: int) -> None:

	matrix = _matrix(seed)
	rng = random.Random(seed)
	matrix.initialize_loop(0, is_active=True, density_mode="manual", manual_density=0.0)

	for _ in range(30):
		action = rng.choice(["resize", "clear", "rotate", "invert", "mutate", "transpose"])
		length = len(matrix.get_loop_notes(0))
		if action == "resize":
			matrix.resize_loop(0, rng.randint(1, 32))
		elif action == "clear":
			matrix.clear_loop_note(0, rng.randrange(length))
		elif action == "rotate":
			matrix.rotate_loop(0, rng.randint(-5, 5))
		elif action == "invert":
			matrix.invert_loop(0)
		elif action == "mutate":
			matrix.mutate_loop(0, 0.5)
		else:
			matrix.transpose_loop(0, rng.randint(-7, 7))

		notes = matrix.get_loop_notes(0)
		assert len(notes) == matrix.get_metadata(0).length
		assert any(note is not None for note in notes)


# --- Resize ---


def test_resize_growth_keeps_prefix_and_fills_by_density () -> None:

	"""Growing 8 -> 16 at density 0.5 keeps the original cells; new cells are Bernoulli(0.5)."""

	original = [60, None, 64, None, 67, None, 69, None]
	new_notes = 0

	for seed in range(50):
		matrix = _matrix(seed)
		matrix.initialize_loop(0, is_active=True, density_mode="manual", manual_density=0.5)
		matrix.set_loop_notes(0, original)

		notes = matrix.resize_loop(0, 16)

		assert len(notes) == 16
		assert notes[:8] == original
		new_notes += sum(1 for note in notes[8:] if note is not None)

	# 400 trials at p=0.5
	assert 150 < new_notes < 250


def test_reinitialise_with_longer_length_fills_new_steps () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, length=8)
	matrix.set_loop_notes(0, [60] * 8)

	matrix.initialize_loop(0, length=16, density_mode="manual", manual_density=1.0)
	notes = matrix.get_loop_notes(0)

	assert len(notes) == 16
	assert notes[:8] == [60] * 8
	assert all(note is not None and _in_scale(note, "major", 60) for note in notes[8:])


def test_reinitialise_does_not_bring_back_old_steps () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60] * 16)

	matrix.initialize_loop(0, length=4)
	matrix.initialize_loop(0, length=8, density_mode="manual", manual_density=0.0)

	assert matrix.get_loop_notes(0) == [60] * 4 + [None] * 4


def test_resize_shrink_truncates () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60, 62, 64, 65, 67, 69])

	assert matrix.resize_loop(0, 3) == [60, 62, 64]


# --- Transformations ---


def test_quantize_loop_snaps_and_stores_scale () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, scale="major", base_note=60)
	matrix.set_loop_notes(0, [61, 66, None, 70])

	assert matrix.quantize_loop(0, "minor") is True
	assert matrix.get_loop_notes(0) == [60, 65, None, 70]
	assert matrix.get_metadata(0).scale == "minor"


def test_quantize_uninitialised_loop () -> None:

	assert _matrix().quantize_loop(2, "minor") is False


def test_quantize_all_active_loops () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	matrix.initialize_loop(1, is_active=True, generation_mode="locked")
	matrix.initialize_loop(2)

	assert matrix.quantize_all_active_loops("phrygian", include_locked=False) == [0]
	assert matrix.current_scale == "phrygian"
	assert matrix.get_metadata(0).scale == "phrygian"
	assert matrix.get_metadata(1).scale == "major"
	assert matrix.get_metadata(2).scale == "major"


def test_quantize_all_unknown_scale_changes_nothing () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	before = matrix.export_state()

	with pytest.raises(ValueError):
		matrix.quantize_all_active_loops("nonsense")

	assert matrix.export_state() == before


def test_transpose_stays_in_scale () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0)
	matrix.set_loop_notes(0, [60, None, 64])
	matrix.transpose_loop(0, 2)

	assert matrix.get_loop_notes(0) == [62, None, 65]


def test_rotate_and_invert () -> None:

	matrix = _matrix()
	matrix.set_loop_notes(0, [60, None, 64, 67])

	matrix.rotate_loop(0, 1)
	assert matrix.get_loop_notes(0) == [67, 60, None, 64]

	matrix.invert_loop(0)
	assert matrix.get_loop_notes(0) == [64, None, 60, 67]


def test_mutate_keeps_rests_and_scale () -> None:

	matrix = _matrix(4)
	matrix.initialize_loop(0, scale="dorian", base_note=50)
	matrix.set_loop_notes(0, [50, None, 53, None, 57, None, 60, None])
	matrix.mutate_loop(0, 1.0)

	notes = matrix.get_loop_notes(0)

	assert [note is None for note in notes] == [False, True] * 4
	assert all(_in_scale(note, "dorian", 50) for note in notes if note is not None)


def test_copy_loop_keeps_target_channel () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, scale="lydian")
	matrix.set_loop_notes(0, [65, None, 69])
	matrix.initialize_loop(5)

	assert matrix.copy_loop(0, 5) is True
	assert matrix.get_loop_notes(5) == [65, None, 69]
	assert matrix.get_metadata(5).scale == "lydian"
	assert matrix.get_metadata(5).channel == 5
	assert matrix.copy_loop(9, 10) is False


# --- Batching ---


def _edit (matrix: evoloop.notes_matrix.NotesMatrix) -> None:

	matrix.set_loop_notes(0, [60, None, 64, None])
	matrix.set_loop_note(0, 1, 62)
	matrix.transpose_loop(0, 5)
	matrix.set_loop_notes(1, [67, 69])
	matrix.update_loop_metadata(1, volume=0.8)


def test_mutations_outside_batch_notify_each_time () -> None:

	matrix = _matrix()
	events = _record(matrix)

	_edit(matrix)

	assert len(events) == 5 + 2


def test_batch_notifies_once_with_same_result () -> None:

	plain = _matrix()
	_edit(plain)

	batched = _matrix()
	events = _record(batched)

	with batched.batch():
		_edit(batched)

	assert events == [{0, 1}]
	assert batched.export_state() == plain.export_state()


def test_written_fires_for_every_write_inside_a_batch () -> None:

	matrix = _matrix()
	written: typing.List[typing.Set[int]] = []
	matrix.events.on("written", written.append)

	with matrix.batch():
		_edit(matrix)
		assert len(written) == 5 + 2

	assert len(written) == 5 + 2


def test_nested_batch_emits_at_outermost_end () -> None:

	matrix = _matrix()
	events = _record(matrix)

	matrix.begin_batch()
	matrix.begin_batch()
	matrix.set_loop_notes(2, [60])
	matrix.end_batch()

	assert events == []
	assert matrix.in_batch

	matrix.end_batch()

	assert events == [{2}]


def test_empty_batch_emits_nothing () -> None:

	matrix = _matrix()
	events = _record(matrix)

	with matrix.batch():
		pass

	assert events == []


def test_unmatched_end_batch_raises () -> None:

	with pytest.raises(RuntimeError):
		_matrix().end_batch()


def test_batch_closes_on_exception () -> None:

	matrix = _matrix()
	events = _record(matrix)

	with pytest.raises(ValueError):
		with matrix.batch():
			matrix.set_loop_notes(0, [60])
			matrix.update_loop_metadata(0, scale="klingon")

	assert not matrix.in_batch
	assert events == [{0}]


# --- Inspection ---


def test_density_metrics_and_stats () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	matrix.set_loop_notes(0, [60, None, 64, None])
	matrix.initialize_loop(1, is_active=True)
	matrix.set_loop_notes(1, [67, 69, 71, 72])

	assert matrix.get_density_metrics(0) == {"note_count": 2, "length": 4, "density": 0.5}
	assert matrix.get_metadata(0).density == pytest.approx(0.5)

	stats = matrix.get_stats()

	assert stats["active_loops"] == 2
	assert stats["total_notes"] == 6
	assert stats["average_density"] == pytest.approx(0.75)


def test_clear_drops_everything () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	events = _record(matrix)

	matrix.clear()

	assert matrix.loop_ids() == []
	assert events == [{0}]


# --- Export / import ---


def test_export_import_restores_state () -> None:

	source = _matrix(current_scale="dorian", base_note=50)
	source.initialize_loop(0, is_active=True, volume=0.7, scale="dorian")
	source.set_loop_notes(0, [50, None, 53, 57])
	source.initialize_loop(4, generation_mode="locked", length=8)
	source.set_loop_notes(4, [62, None] * 4)

	target = _matrix()
	target.import_state(source.export_state())

	assert target.export_state() == source.export_state()
	assert target.current_scale == "dorian"
	assert target.active_loops() == [0]


def test_import_empty_state () -> None:

	matrix = _matrix()
	matrix.initialize_loop(0, is_active=True)
	matrix.import_state({})

	assert matrix.loop_ids() == []
	assert matrix.current_scale == "major"


def test_import_legacy_shapes () -> None:

	"""camelCase keys, list-shaped notes, a legacy density and an old scale name."""

	data = {
		"notes": [[57, None, 60, None, 64, None, 67, None]],
		"metadata": {
			"0": {"isActive": True, "length": 4, "scale": "harmonicMinor", "density": 0.7, "baseNote": 57, "noteRangeMin": 40},
			"1": {"scale": [0, 2, 4], "length": 2},
			"20": {"isActive": True},
			"bad": {},
		},
		"state": {"currentScale": "dorian"},
	}

	matrix = _matrix()
	matrix.import_state(data)

	meta = matrix.get_metadata(0)

	assert matrix.loop_ids() == [0, 1]
	assert matrix.current_scale == "dorian"
	assert meta.is_active
	assert meta.scale == "harmonic_minor"
	assert meta.auto_density == pytest.approx(0.7)
	assert meta.base_note == 57
	assert meta.note_range_min == 40
	assert matrix.get_loop_notes(0) == [57, None, 60, None]
	assert matrix.get_metadata(1).scale == "dorian"
	assert len(matrix.get_loop_notes(1)) == 2


def test_import_unknown_current_scale_uses_fallback () -> None:

	matrix = _matrix(current_scale="lydian")
	matrix.import_state({"state": {"current_scale": "no_such_scale"}})

	assert matrix.current_scale == "lydian"
