"""Step-placement helpers shared by every pattern generator.

:func:`compute_positions` decides *which* steps of a loop carry a note.  It
knows nothing about pitch; the generators decide *what* plays there.
"""

import math
import random
import typing

T = typing.TypeVar("T")

TIMING_MODES = ("euclidean", "even", "random", "fillAll")


def pulse_count (length: int, density: float, allow_zero: bool = True) -> int:

	"""
	Number of notes a loop of ``length`` steps carries at ``density``.

	Rounds half up (``length=2, density=0.25`` gives 1) so the count is the
	same for every generator.  With ``allow_zero=False`` at least one pulse is
	returned.
	"""

	count = int(math.floor(length * density + 0.5))
	count = max(0, min(length, count))

	if not allow_zero:
		count = max(1, count)

	return count


def generate_euclidean_sequence (steps: int, pulses: int) -> typing.List[int]:

	"""
	Spread pulses as evenly as possible over steps.

	Step ``i`` is a hit iff ``(i * pulses) % steps < pulses``.  This matches
	Bjorklund's distribution up to rotation without the recursion.
	"""

	if steps <= 0:
		return []

	if pulses > steps:
		raise ValueError(f"Pulses ({pulses}) cannot be greater than steps ({steps})")

	if pulses <= 0:
		return [0] * steps

	return [1 if (i * pulses) % steps < pulses else 0 for i in range(steps)]


def sequence_to_indices (sequence: typing.List[int]) -> typing.List[int]:

	"""Extract step indices where hits occur in a binary sequence."""

	return [i for i, v in enumerate(sequence) if v]


def roll (indices: typing.List[int], shift: int, length: int) -> typing.List[int]:

	"""Circularly shift step indices by the specified amount."""

	return [(i + shift) % length for i in indices]


def even_positions (length: int, count: int) -> typing.List[int]:

	"""Positions at ``floor(i * length / count)`` for ``i`` in ``[0, count)``."""

	if count <= 0 or length <= 0:
		return []

	return [(i * length) // count for i in range(count)]


def random_positions (length: int, count: int, rng: random.Random) -> typing.List[int]:

	"""``count`` distinct indices drawn uniformly without replacement."""

	if count <= 0 or length <= 0:
		return []

	return rng.sample(range(length), min(count, length))


def bounce_positions (length: int, start_offset: int = 0) -> typing.List[int]:

	"""
	Every index of a loop in ping-pong order.

	Starts at ``start_offset`` moving up, turns around at ``length - 1`` and at
	``0``, and skips indices already visited, so each index appears exactly once
	and an end point is never emitted twice in a row.

	Example:
		```python
		bounce_positions(6, start_offset=3)  # → [3, 4, 5, 2, 1, 0]
		```
	"""

	if length <= 0:
		return []

	position = start_offset % length
	direction = 1
	visited: typing.Set[int] = set()
	order: typing.List[int] = []

	while len(order) < length:

		if position not in visited:
			visited.add(position)
			order.append(position)

		next_position = position + direction

		if next_position < 0 or next_position > length - 1:
			direction = -direction
			next_position = position + direction

		position = max(0, min(length - 1, next_position))

	return order


def compute_positions (
	length: int,
	density: float,
	mode: str = "euclidean",
	start_offset: int = 0,
	allow_zero: bool = False,
	rng: typing.Optional[random.Random] = None
) -> typing.List[int]:

	"""
	Choose the steps of a loop that receive a note.

	Parameters:
		length: Steps in the loop.  ``length <= 0`` returns an empty list.
		density: Fraction of steps to fill (0.0-1.0).  Callers clamp it; this
			function clamps again only to keep the count inside the loop.
		mode: ``"euclidean"``, ``"even"``, ``"random"`` or ``"fillAll"``.
		start_offset: Phase rotation for every mode except ``"fillAll"``,
			where it is the index the bounce starts from.
		allow_zero: When False at least one position is always returned.
		rng: Random source for ``"random"`` mode.

	Returns:
		Step indices.  ``"fillAll"`` returns them in traversal order; every
		other mode returns them sorted ascending.
	"""

	if mode not in TIMING_MODES:
		raise ValueError(f"Unknown timing mode {mode!r}. Available: {list(TIMING_MODES)}")

	if length <= 0:
		return []

	if mode == "fillAll":
		return bounce_positions(length, start_offset)

	density = max(0.0, min(1.0, density))
	count = pulse_count(length, density, allow_zero=allow_zero)

	if count == 0:
		return []

	if mode == "even":
		raw = even_positions(length, count)

	elif mode == "random":
		raw = random_positions(length, count, rng or random.Random())

	else:
		raw = sequence_to_indices(generate_euclidean_sequence(length, count))

	return sorted(roll(raw, start_offset, length))


def weighted_choice (options: typing.List[typing.Tuple[T, float]], rng: random.Random) -> T:

	"""Pick one item from a list of (value, weight) pairs.

	Weights are relative - they don't need to sum to 1.0. Higher weight means
	higher probability of selection.

	Parameters:
		options: List of `(value, weight)` tuples
		rng: Random number generator instance

	Example:
		```python
		mutation = evoloop.sequence_utils.weighted_choice([
			("regenerate", 0.5),
			("density", 0.3),
			("transpose", 0.2),
		], rng)
		```
	"""

	if not options:
		raise ValueError("Options list cannot be empty")

	total = sum(weight for _, weight in options)

	if total <= 0:
		raise ValueError("Total weight must be positive")

	threshold = rng.random() * total
	cumulative = 0.0

	for value, weight in options:
		cumulative += weight
		if cumulative >= threshold:
			return value

	return options[-1][0]


def clamp (value: float, low: float, high: float) -> float:

	"""Clamp a value into ``[low, high]``."""

	return max(low, min(high, value))
