"""Mutation intents - data-only descriptions of changes an evolution tick wants to make.

The orchestrator first builds a plain list of intents, then :func:`coalesce`
reduces it, and only then is anything applied to the notes matrix.  Intents
live for a single tick.
"""

import dataclasses
import logging
import typing


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Regenerate:

	"""Generate a fresh row for one loop."""

	loop_id: int
	pattern_type: typing.Optional[str] = None
	density: typing.Optional[float] = None


@dataclasses.dataclass(frozen=True)
class RegenerateAll:

	"""Regenerate every active, unlocked loop."""

	pattern_type: typing.Optional[str] = None


@dataclasses.dataclass(frozen=True)
class MetadataUpdate:

	"""Partial metadata patch for one loop."""

	loop_id: int
	patch: typing.Mapping[str, typing.Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class DensityAdjust:

	"""Move one loop toward a new auto density."""

	loop_id: int
	target: float


@dataclasses.dataclass(frozen=True)
class Quantize:

	"""Snap one loop onto a scale and adopt it."""

	loop_id: int
	scale: str


@dataclasses.dataclass(frozen=True)
class Transpose:

	"""Shift one loop by a number of semitones, staying in its scale."""

	loop_id: int
	semitones: int


@dataclasses.dataclass(frozen=True)
class ScaleChange:

	"""Change the global scale and re-quantize the active loops."""

	scale: str


Intent = typing.Union[Regenerate, RegenerateAll, MetadataUpdate, DensityAdjust, Quantize, Transpose, ScaleChange]

LOOP_INTENTS = (Regenerate, MetadataUpdate, DensityAdjust, Quantize, Transpose)


def target_loop (intent: Intent) -> typing.Optional[int]:

	"""The loop an intent addresses, or None for global intents."""

	return getattr(intent, "loop_id", None)


def coalesce (
	intents: typing.Iterable[Intent],
	active_count: int,
	current_scale: str,
	locked: typing.Iterable[int] = ()
) -> typing.List[Intent]:

	"""
	Reduce a raw plan to the intents that should actually run.

	Rules, applied in this order:

	1. A ``ScaleChange`` to ``current_scale`` is dropped.  Of several scale
	   changes only the last survives.
	2. Intents for ``locked`` loops are dropped.
	3. If a ``ScaleChange`` survives, every ``Quantize`` is dropped; the global
	   re-quantization replaces them.
	4. When ``Regenerate`` targets more than half of ``active_count`` loops,
	   those intents collapse into one ``RegenerateAll``.
	5. ``MetadataUpdate`` intents for one loop merge, last writer wins per field.
	6. For ``DensityAdjust``, ``Regenerate``, ``Quantize`` and ``Transpose`` only
	   the last intent per loop is kept.

	The result lists the ``ScaleChange`` first, then ``RegenerateAll``, then
	per-loop intents in the order each (kind, loop) pair first appeared.

	Example:
		```python
		coalesce([ScaleChange("major"), Regenerate(0)], active_count=4, current_scale="major")
		# → [Regenerate(loop_id=0, pattern_type=None, density=None)]
		```
	"""

	locked_ids = set(locked)
	scale_change: typing.Optional[ScaleChange] = None
	regenerate_all: typing.Optional[RegenerateAll] = None

	# (kind, loop_id) -> intent, in first-seen order.
	per_loop: typing.Dict[typing.Tuple[type, int], Intent] = {}
	dropped = 0

	for intent in intents:

		if isinstance(intent, ScaleChange):
			if intent.scale == current_scale:
				dropped += 1
				continue
			scale_change = intent
			continue

		if isinstance(intent, RegenerateAll):
			regenerate_all = intent
			continue

		if not isinstance(intent, LOOP_INTENTS):
			raise ValueError(f"Unknown intent {intent!r}")

		loop_id = target_loop(intent)

		if loop_id in locked_ids:
			dropped += 1
			continue

		key = (type(intent), loop_id)

		if isinstance(intent, MetadataUpdate) and key in per_loop:
			merged = dict(per_loop[key].patch)  # type: ignore[union-attr]
			merged.update(intent.patch)
			per_loop[key] = MetadataUpdate(loop_id, merged)
			continue

		per_loop[key] = intent

	if scale_change is not None:
		quantize_keys = [key for key in per_loop if key[0] is Quantize]
		dropped += len(quantize_keys)
		for key in quantize_keys:
			del per_loop[key]

	regenerate_keys = [key for key in per_loop if key[0] is Regenerate]

	if regenerate_all is None and active_count > 0 and len(regenerate_keys) * 2 > active_count:
		pattern_types = {per_loop[key].pattern_type for key in regenerate_keys}  # type: ignore[union-attr]
		regenerate_all = RegenerateAll(pattern_types.pop() if len(pattern_types) == 1 else None)

	if regenerate_all is not None:
		for key in regenerate_keys:
			del per_loop[key]

	result: typing.List[Intent] = []

	if scale_change is not None:
		result.append(scale_change)

	if regenerate_all is not None:
		result.append(regenerate_all)

	result.extend(per_loop.values())

	if dropped:
		logger.debug(f"Coalesced plan: {dropped} intents dropped, {len(result)} remain")

	return result
