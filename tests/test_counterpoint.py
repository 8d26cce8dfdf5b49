import evoloop.counterpoint
import evoloop.scales


MAJOR = evoloop.scales.get_scale("major")


def test_free_note_is_unchanged () -> None:

	assert evoloop.counterpoint.resolve_conflict(64, {60, 67}, MAJOR, 60, 48, 84) == 64


def test_occupied_note_moves_to_nearest_free_tone () -> None:

	"""E is taken, F is one semitone above and D two below, so F wins."""

	assert evoloop.counterpoint.resolve_conflict(64, {64}, MAJOR, 60, 48, 84) == 65


def test_equal_distance_prefers_lower_note () -> None:

	"""D is taken; C and E are both two semitones away and C wins."""

	assert evoloop.counterpoint.resolve_conflict(62, {62}, MAJOR, 60, 48, 84) == 60


def test_all_tones_occupied_keeps_candidate () -> None:

	occupied = set(evoloop.scales.possible_notes([0, 7], 60, 60, 72))

	assert evoloop.counterpoint.resolve_conflict(60, occupied, [0, 7], 60, 60, 72) == 60


def test_analyze_occupied_wraps_shorter_loops () -> None:

	"""A 4-step loop is read at step % 4."""

	others = [[60, None, 64, None], [None] * 16, []]

	assert evoloop.counterpoint.analyze_occupied_notes(others, 6) == {64}
	assert evoloop.counterpoint.analyze_occupied_notes(others, 1) == set()


def test_apply_counterpoint_without_others_is_identity () -> None:

	notes = [60, None, 64, 67]

	assert evoloop.counterpoint.apply_counterpoint(notes, [], MAJOR, 60, 48, 84) == notes


def test_apply_counterpoint_removes_collisions () -> None:

	notes = [60, None, 64, 67]
	others = [[60, 62, 64, 65]]

	resolved = evoloop.counterpoint.apply_counterpoint(notes, others, MAJOR, 60, 48, 84)

	assert resolved[1] is None
	assert resolved[3] == 67
	assert evoloop.counterpoint.validate_counterpoint(resolved, others) == []


def test_validate_counterpoint_reports_collisions () -> None:

	collisions = evoloop.counterpoint.validate_counterpoint([60, 62, None], [[60, 61, 62], [None, 62, None]])

	assert collisions == [(0, 60, 0), (1, 62, 1)]
