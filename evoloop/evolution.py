"""Evolution orchestrator - plans and applies one round of changes per evolution tick.

Ticks are driven by the transport.  :meth:`EvolutionOrchestrator.on_step` is
called for every step and only acts on the first step of a measure that is due,
so at most one plan is applied per measure whatever the tempo.

A tick runs in four stages:

1. **plan** - pick a global scale (per mode) and a mutation for each selected
   loop, producing a list of :mod:`evoloop.intents`.
2. **coalesce** - :func:`evoloop.intents.coalesce` drops no-ops and locked
   loops and merges duplicates.
3. **apply** - every scale named by the plan is resolved first, then the
   intents run inside one notes-matrix batch.
4. **balance** - the energy manager turns the mix down if it got too busy.

Modes:

- ``"classic"`` - a random scale (not the current or a recent one) each tick.
- ``"momentum"`` - as classic, but the intensity ramps from ``intensity`` to
  ``momentum_max_level`` over ``momentum_ramp_seconds`` after :meth:`enable`.
- ``"call_response"`` - one active loop calls, another answers in a related
  scale.  The global scale stays put.
- ``"tension_release"`` - the global scale alternates between dissonant and
  consonant families on each tick.
"""

import dataclasses
import logging
import math
import random
import time
import typing

import evoloop.easing
import evoloop.energy
import evoloop.event_emitter
import evoloop.intents
import evoloop.melodic_generator
import evoloop.notes_matrix
import evoloop.scales
import evoloop.sequence_utils


logger = logging.getLogger(__name__)

EVOLUTION_MODES = ("classic", "momentum", "call_response", "tension_release")
MUTATION_KINDS = ("regenerate", "density", "transpose")


def _default_mutation_weights () -> typing.Dict[str, float]:

	return {"regenerate": 0.5, "density": 0.3, "transpose": 0.2}


@dataclasses.dataclass
class EvolutionSettings:

	"""
	Tunable parameters for the orchestrator.

	Attributes:
		interval_measures: Measures between ticks (1-64).
		intensity: Fraction of active unlocked loops mutated per tick (0.1-1.0).
		mode: One of :data:`EVOLUTION_MODES`.
		scale_locked: When True no tick changes any scale.
		recent_scale_memory: How many past scales are avoided.
		momentum_ramp_seconds: Time for momentum mode to reach its peak.
		momentum_max_level: Peak intensity in momentum mode.
		momentum_shape: Easing name or callable for the momentum ramp.
		mutation_weights: Relative weights of "regenerate", "density", "transpose".
		transpose_intervals: Semitone shifts a transpose may pick from.
		scale_change_probability: Chance a tick proposes a new global scale.
		effects_drift: Scales the chance a selected loop's delay/reverb drift.
	"""

	interval_measures: int = 4
	intensity: float = 0.3
	mode: str = "classic"
	scale_locked: bool = False
	recent_scale_memory: int = 3
	momentum_ramp_seconds: float = 120.0
	momentum_max_level: float = 1.0
	momentum_shape: typing.Union[str, evoloop.easing.EasingFn] = "ease_in"
	mutation_weights: typing.Dict[str, float] = dataclasses.field(default_factory=_default_mutation_weights)
	transpose_intervals: typing.Tuple[int, ...] = (-7, -5, -2, 2, 5, 7)
	scale_change_probability: float = 1.0
	effects_drift: float = 0.3

	def __post_init__ (self) -> None:

		if self.mode not in EVOLUTION_MODES:
			raise ValueError(f"Unknown evolution mode {self.mode!r}. Available: {list(EVOLUTION_MODES)}")

		for name, weight in self.mutation_weights.items():
			if name not in MUTATION_KINDS:
				raise ValueError(f"Unknown mutation {name!r}. Available: {list(MUTATION_KINDS)}")
			if weight < 0:
				raise ValueError(f"Mutation weight for {name!r} must be non-negative, got {weight}")

		evoloop.easing.get_easing(self.momentum_shape)

		self.interval_measures = max(1, min(64, int(self.interval_measures)))
		self.intensity = max(0.1, min(1.0, float(self.intensity)))
		self.recent_scale_memory = max(0, int(self.recent_scale_memory))
		self.momentum_ramp_seconds = max(0.0, float(self.momentum_ramp_seconds))
		self.momentum_max_level = max(0.0, min(1.0, float(self.momentum_max_level)))
		self.scale_change_probability = max(0.0, min(1.0, float(self.scale_change_probability)))
		self.effects_drift = max(0.0, min(1.0, float(self.effects_drift)))
		self.transpose_intervals = tuple(int(s) for s in self.transpose_intervals if s != 0) or (2,)


@dataclasses.dataclass
class EvolutionPlan:

	"""The intents proposed for one tick, before and after coalescing."""

	measure: int
	raw: typing.List[evoloop.intents.Intent]
	intents: typing.List[evoloop.intents.Intent]


class EvolutionOrchestrator:

	"""
	Decide and apply evolution ticks against a notes matrix.

	Parameters:
		matrix: The store to mutate.
		energy: Supplies the density target and balances after each tick.
		generator: Writes regenerated rows (shares the matrix).
		settings: Tick parameters; defaults to :class:`EvolutionSettings`.
		rng: Random source for every decision.
		clock: Monotonic time source for the momentum ramp.

	The orchestrator emits ``"evolved"`` on ``self.events`` after every applied
	tick with the :class:`EvolutionPlan`.
	"""

	def __init__ (
		self,
		matrix: evoloop.notes_matrix.NotesMatrix,
		energy: evoloop.energy.EnergyManager,
		generator: evoloop.melodic_generator.MelodicGenerator,
		settings: typing.Optional[EvolutionSettings] = None,
		rng: typing.Optional[random.Random] = None,
		clock: typing.Callable[[], float] = time.monotonic
	) -> None:

		self.matrix = matrix
		self.energy = energy
		self.generator = generator
		self.settings = settings or EvolutionSettings()
		self.rng = rng or random.Random()
		self.clock = clock
		self.events = evoloop.event_emitter.EventEmitter()

		self.enabled = False
		self.enabled_at: typing.Optional[float] = None
		self.next_measure = 0
		self.last_measure: typing.Optional[int] = None
		self.tick_count = 0
		self.global_density_bias = 0.5
		self.recent_scales: typing.List[str] = []

		self._tension = True

	# --- Control ---

	def enable (self) -> None:

		"""Start evolving.  The momentum ramp restarts from now."""

		self.enabled = True
		self.enabled_at = self.clock()

		logger.info(f"Evolution enabled: mode={self.settings.mode} every {self.settings.interval_measures} measures")

	def stop (self) -> None:

		"""Stop scheduling ticks.  Nothing is in flight, so nothing is cancelled."""

		self.enabled = False

		logger.info("Evolution stopped")

	def effective_intensity (self) -> float:

		"""Current mutation intensity, including the momentum ramp."""

		base = self.settings.intensity

		if self.settings.mode != "momentum":
			return base

		if self.enabled_at is None or self.settings.momentum_ramp_seconds <= 0:
			progress = 1.0 if self.settings.momentum_ramp_seconds <= 0 else 0.0
		else:
			progress = min(1.0, max(0.0, (self.clock() - self.enabled_at) / self.settings.momentum_ramp_seconds))

		peak = self.settings.momentum_max_level
		level = base + (peak - base) * evoloop.easing.get_easing(self.settings.momentum_shape)(progress)

		return min(peak, level)

	# --- Transport hook ---

	def on_step (self, step_index: int, steps_per_measure: int = 16) -> typing.Optional[EvolutionPlan]:

		"""
		Called by the transport on every step.

		Runs :meth:`tick` only on the first step of a measure, only when that
		measure is due, and never twice for the same measure.
		"""

		if not self.enabled or steps_per_measure <= 0:
			return None

		if step_index % steps_per_measure != 0:
			return None

		measure = step_index // steps_per_measure

		if measure < self.next_measure or measure == self.last_measure:
			return None

		return self.tick(measure)

	# --- Planning ---

	def _evolvable_loops (self) -> typing.List[int]:

		"""Active loops that automatic evolution may touch."""

		loops = []

		for loop_id in self.matrix.active_loops():
			meta = self.matrix.get_metadata(loop_id)
			if meta is not None and not meta.is_locked:
				loops.append(loop_id)

		return loops

	def _locked_loops (self) -> typing.List[int]:

		locked = []

		for loop_id in self.matrix.loop_ids():
			meta = self.matrix.get_metadata(loop_id)
			if meta is not None and meta.is_locked:
				locked.append(loop_id)

		return locked

	def _choose_scale (self) -> typing.Optional[str]:

		"""The global scale this tick proposes, or None."""

		settings = self.settings
		current = self.matrix.current_scale

		if settings.scale_locked or settings.mode == "call_response":
			return None

		if self.rng.random() >= settings.scale_change_probability:
			return None

		if settings.mode == "tension_release":
			if self._tension:
				return evoloop.scales.dissonant_scale(self.rng, current=current, recent=self.recent_scales)
			return evoloop.scales.consonant_scale(self.rng, current=current, recent=self.recent_scales)

		return evoloop.scales.random_scale(self.rng, current=current, recent=self.recent_scales)

	def _loop_mutation (self, loop_id: int, intensity: float) -> typing.List[evoloop.intents.Intent]:

		"""Intents for one selected loop."""

		meta = self.matrix.get_metadata(loop_id)

		if meta is None:
			return [evoloop.intents.Regenerate(loop_id)]

		weights = [(name, weight) for name, weight in self.settings.mutation_weights.items() if weight > 0]
		kind = evoloop.sequence_utils.weighted_choice(weights, self.rng) if weights else "regenerate"

		planned: typing.List[evoloop.intents.Intent] = []

		if kind == "density" and meta.density_mode == "auto":
			target = self.energy.adaptive_density_target(self.global_density_bias)
			nudged = meta.auto_density + (target - meta.auto_density) * 0.5
			planned.append(evoloop.intents.DensityAdjust(loop_id, round(nudged, 4)))

		elif kind == "transpose":
			planned.append(evoloop.intents.Transpose(loop_id, self.rng.choice(self.settings.transpose_intervals)))

		else:
			planned.append(evoloop.intents.Regenerate(loop_id))

		if self.rng.random() < self.settings.effects_drift * intensity:
			planned.append(evoloop.intents.MetadataUpdate(loop_id, {
				"delay_amount": max(0.0, min(1.0, meta.delay_amount + (self.rng.random() - 0.5) * 0.3 * intensity)),
				"reverb_amount": max(0.0, min(1.0, meta.reverb_amount + (self.rng.random() - 0.5) * 0.4 * intensity)),
			}))

		return planned

	def plan (self, measure: int) -> EvolutionPlan:

		"""
		Propose the intents for ``measure`` without changing anything.

		Locked loops are never selected, and :func:`~evoloop.intents.coalesce`
		drops any intent that still names one.
		"""

		intensity = self.effective_intensity()
		raw: typing.List[evoloop.intents.Intent] = []

		scale = self._choose_scale()

		if scale is not None:
			raw.append(evoloop.intents.ScaleChange(scale))

		candidates = self._evolvable_loops()
		excluded: typing.Set[int] = set()

		if self.settings.mode == "call_response":

			active = self.matrix.active_loops()

			if active:
				caller = self.rng.choice(active)
				responders = [loop_id for loop_id in candidates if loop_id != caller]

				if responders:
					responder = self.rng.choice(responders)
					caller_meta = self.matrix.get_metadata(caller)
					responder_meta = self.matrix.get_metadata(responder)
					caller_scale = caller_meta.scale if caller_meta else self.matrix.current_scale
					answer = evoloop.scales.related_scale(
						caller_scale,
						self.rng,
						current = responder_meta.scale if responder_meta else None,
						recent = self.recent_scales
					)
					raw.append(evoloop.intents.Quantize(responder, answer))
					raw.append(evoloop.intents.Regenerate(responder))
					excluded = {caller, responder}

					logger.debug(f"Call and response: loop {caller} calls, loop {responder} answers in {answer}")

		if candidates:
			count = max(1, int(math.floor(len(candidates) * intensity)))
			selected = self.rng.sample(candidates, min(count, len(candidates)))

			for loop_id in selected:
				if loop_id not in excluded:
					raw.extend(self._loop_mutation(loop_id, intensity))

		intents = evoloop.intents.coalesce(
			raw,
			active_count = len(self.matrix.active_loops()),
			current_scale = self.matrix.current_scale,
			locked = self._locked_loops()
		)

		return EvolutionPlan(measure=measure, raw=raw, intents=intents)

	# --- Application ---

	def _validate (self, intents: typing.Sequence[evoloop.intents.Intent]) -> None:

		"""Resolve every scale the plan names so a bad name fails before any write."""

		for intent in intents:
			if isinstance(intent, (evoloop.intents.ScaleChange, evoloop.intents.Quantize)):
				evoloop.scales.get_scale(intent.scale)

	def _adjust_density (self, loop_id: int, target: float) -> None:

		"""Store the new auto density and thin or fill the row to match it."""

		meta = self.matrix.get_metadata(loop_id)

		if meta is None:
			return

		target = max(0.0, min(1.0, target))

		if meta.density_mode == "auto":
			self.matrix.update_loop_metadata(loop_id, auto_density=target)

		notes = self.matrix.get_loop_notes(loop_id)
		wanted = evoloop.sequence_utils.pulse_count(len(notes), target, allow_zero=False)
		sounding = [step for step, note in enumerate(notes) if note is not None]
		rests = [step for step, note in enumerate(notes) if note is None]

		if len(sounding) > wanted:
			for step in self.rng.sample(sounding, len(sounding) - wanted):
				notes[step] = None

		elif len(sounding) < wanted and sounding:
			for step in self.rng.sample(rests, min(len(rests), wanted - len(sounding))):
				notes[step] = notes[self.rng.choice(sounding)]

		self.matrix.set_loop_notes(loop_id, notes)

	def _apply (self, intent: evoloop.intents.Intent) -> None:

		matrix = self.matrix

		if isinstance(intent, evoloop.intents.ScaleChange):
			previous = matrix.current_scale
			matrix.quantize_all_active_loops(intent.scale, include_locked=False)
			self._remember_scale(intent.scale)
			logger.info(f"Scale change {previous} -> {intent.scale}")
			return

		if isinstance(intent, evoloop.intents.RegenerateAll):
			self.generator.regenerate_loops(self._evolvable_loops(), pattern_type=intent.pattern_type)
			return

		loop_id = evoloop.intents.target_loop(intent)
		meta = matrix.get_metadata(loop_id) if loop_id is not None else None

		if meta is None:
			logger.warning(f"Skipping {type(intent).__name__} for loop {loop_id}: no metadata")
			return

		if meta.is_locked:
			logger.debug(f"Skipping {type(intent).__name__} for locked loop {loop_id}")
			return

		if isinstance(intent, evoloop.intents.Regenerate):
			self.generator.regenerate_loop(loop_id, pattern_type=intent.pattern_type, density=intent.density)

		elif isinstance(intent, evoloop.intents.MetadataUpdate):
			matrix.update_loop_metadata(loop_id, dict(intent.patch))

		elif isinstance(intent, evoloop.intents.DensityAdjust):
			self._adjust_density(loop_id, intent.target)

		elif isinstance(intent, evoloop.intents.Quantize):
			matrix.quantize_loop(loop_id, intent.scale)

		elif isinstance(intent, evoloop.intents.Transpose):
			matrix.transpose_loop(loop_id, intent.semitones)

	def _remember_scale (self, scale: str) -> None:

		self.recent_scales.append(scale)

		memory = self.settings.recent_scale_memory

		if memory <= 0:
			self.recent_scales = []
		else:
			self.recent_scales = self.recent_scales[-memory:]

	def apply_plan (self, plan: EvolutionPlan) -> None:

		"""
		Apply a coalesced plan inside one batch, then balance energy.

		Raises ``ValueError`` (before touching anything) if the plan names an
		unknown scale.
		"""

		self._validate(plan.intents)

		with self.matrix.batch():
			for intent in plan.intents:
				self._apply(intent)

		self.energy.check_and_balance(self.matrix)

	def tick (self, measure: int) -> EvolutionPlan:

		"""Plan, apply and schedule one evolution tick for ``measure``."""

		plan = self.plan(measure)
		self.apply_plan(plan)

		if self.settings.mode == "tension_release":
			self._tension = not self._tension

		self.tick_count += 1
		self.last_measure = measure
		self.next_measure = measure + self.settings.interval_measures

		logger.info(
			f"Evolution tick at measure {measure}: {len(plan.raw)} proposed, {len(plan.intents)} applied, "
			f"next at {self.next_measure}"
		)

		self.events.emit("evolved", plan)

		return plan
