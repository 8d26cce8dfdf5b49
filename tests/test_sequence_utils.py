import random

import pytest

import evoloop.sequence_utils


def test_pulse_count_rounds_half_up () -> None:

	"""Half a pulse rounds up, so short loops are not silenced by banker's rounding."""

	assert evoloop.sequence_utils.pulse_count(2, 0.25) == 1
	assert evoloop.sequence_utils.pulse_count(16, 0.25) == 4
	assert evoloop.sequence_utils.pulse_count(10, 0.34) == 3


def test_pulse_count_clamps_to_length () -> None:

	assert evoloop.sequence_utils.pulse_count(4, 1.5) == 4


def test_pulse_count_allow_zero () -> None:

	"""allow_zero=False forces at least one pulse."""

	assert evoloop.sequence_utils.pulse_count(16, 0.0) == 0
	assert evoloop.sequence_utils.pulse_count(16, 0.0, allow_zero=False) == 1


def test_euclidean_sequence_modulo_rule () -> None:

	"""Step i is a hit iff (i * pulses) % steps < pulses."""

	sequence = evoloop.sequence_utils.generate_euclidean_sequence(16, 4)

	assert evoloop.sequence_utils.sequence_to_indices(sequence) == [0, 4, 8, 12]


def test_euclidean_sequence_rejects_too_many_pulses () -> None:

	with pytest.raises(ValueError):
		evoloop.sequence_utils.generate_euclidean_sequence(4, 5)


def test_sequence_to_indices_empty () -> None:

	"""An all-zero sequence should return an empty list."""

	assert evoloop.sequence_utils.sequence_to_indices([0, 0, 0, 0]) == []


def test_roll_with_wraparound () -> None:

	"""Indices that exceed length should wrap to the beginning."""

	assert evoloop.sequence_utils.roll([12, 14], 4, 16) == [0, 2]


def test_roll_negative_shift () -> None:

	assert evoloop.sequence_utils.roll([4, 12], -4, 16) == [0, 8]


# --- compute_positions ---


def test_compute_positions_euclidean_basic () -> None:

	"""length=16, density=0.25 gives the four evenly spaced downbeats."""

	assert evoloop.sequence_utils.compute_positions(16, 0.25) == [0, 4, 8, 12]


def test_compute_positions_start_offset_rotates () -> None:

	assert evoloop.sequence_utils.compute_positions(16, 0.25, start_offset=2) == [2, 6, 10, 14]


def test_compute_positions_even () -> None:

	"""Even mode places notes at floor(i * length / count)."""

	assert evoloop.sequence_utils.compute_positions(10, 0.3, mode="even") == [0, 3, 6]


def test_compute_positions_random_is_distinct_and_sorted () -> None:

	positions = evoloop.sequence_utils.compute_positions(16, 0.5, mode="random", rng=random.Random(4))

	assert len(positions) == 8
	assert len(set(positions)) == 8
	assert positions == sorted(positions)
	assert all(0 <= p < 16 for p in positions)


def test_compute_positions_random_is_seeded () -> None:

	"""The same seed picks the same steps."""

	a = evoloop.sequence_utils.compute_positions(32, 0.4, mode="random", rng=random.Random(11))
	b = evoloop.sequence_utils.compute_positions(32, 0.4, mode="random", rng=random.Random(11))

	assert a == b


def test_compute_positions_allow_zero_false_forces_one () -> None:

	assert evoloop.sequence_utils.compute_positions(16, 0.0, allow_zero=False) == [0]


def test_compute_positions_allow_zero_true_can_be_empty () -> None:

	assert evoloop.sequence_utils.compute_positions(16, 0.0, allow_zero=True) == []


def test_compute_positions_empty_length () -> None:

	assert evoloop.sequence_utils.compute_positions(0, 0.5) == []
	assert evoloop.sequence_utils.compute_positions(-3, 0.5) == []


def test_compute_positions_unknown_mode () -> None:

	with pytest.raises(ValueError):
		evoloop.sequence_utils.compute_positions(16, 0.5, mode="swing")


@pytest.mark.parametrize("density", [0.1, 0.25, 0.5, 0.75, 1.0])
@pytest.mark.parametrize("length", [1, 5, 8, 13, 16, 32])
def test_compute_positions_count_matches_density (length: int, density: float) -> None:

	"""Every non-fillAll mode places round(length * density) notes, at least one."""

	expected = max(1, evoloop.sequence_utils.pulse_count(length, density))

	for mode in ("euclidean", "even", "random"):
		positions = evoloop.sequence_utils.compute_positions(length, density, mode=mode, rng=random.Random(0))
		assert len(positions) == expected
		assert len(set(positions)) == expected


# --- fillAll ---


def test_bounce_positions_from_offset () -> None:

	assert evoloop.sequence_utils.bounce_positions(6, start_offset=3) == [3, 4, 5, 2, 1, 0]


def test_bounce_positions_from_zero () -> None:

	assert evoloop.sequence_utils.bounce_positions(5) == [0, 1, 2, 3, 4]


@pytest.mark.parametrize("length", [1, 2, 3, 7, 16, 32])
@pytest.mark.parametrize("offset", [0, 1, 5, 31])
def test_fill_all_visits_every_index_once (length: int, offset: int) -> None:

	"""fillAll covers [0, length) exactly once, whatever the start offset."""

	positions = evoloop.sequence_utils.compute_positions(length, 0.1, mode="fillAll", start_offset=offset)

	assert sorted(positions) == list(range(length))
	assert positions[0] == offset % length


def test_fill_all_never_repeats_an_extreme () -> None:

	"""Neither end of the loop is emitted twice in a row."""

	positions = evoloop.sequence_utils.compute_positions(8, 1.0, mode="fillAll", start_offset=6)

	for a, b in zip(positions, positions[1:]):
		assert a != b


# --- weighted_choice ---


def test_weighted_choice_single_option () -> None:

	assert evoloop.sequence_utils.weighted_choice([("only", 1.0)], random.Random(1)) == "only"


def test_weighted_choice_zero_weight_never_chosen () -> None:

	rng = random.Random(3)

	for _ in range(100):
		assert evoloop.sequence_utils.weighted_choice([("never", 0.0), ("always", 1.0)], rng) == "always"


def test_weighted_choice_rejects_empty () -> None:

	with pytest.raises(ValueError):
		evoloop.sequence_utils.weighted_choice([], random.Random(1))
