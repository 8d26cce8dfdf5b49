"""The ensemble - the one object a UI, config file or transport talks to.

An :class:`Ensemble` owns a notes matrix, an energy manager, a melodic
generator and an evolution orchestrator, wired together, and exposes plain
mutation requests with every numeric input clamped at the boundary.

```python
import evoloop

ensemble = evoloop.Ensemble(scale="dorian", base_note=50, seed=3)

ensemble.set_loop_active(0, True)
ensemble.set_loop_active(1, True)
ensemble.set_global("evolve_interval_measures", 2)
ensemble.set_global("evolution_enabled", True)

for step in range(16 * 8):
	ensemble.on_step(step)
```
"""

import logging
import random
import time
import typing

import evoloop.constants
import evoloop.energy
import evoloop.evolution
import evoloop.melodic_generator
import evoloop.notes_matrix
import evoloop.scales


logger = logging.getLogger(__name__)

# Global parameters and their defaults.
GLOBAL_DEFAULTS: typing.Dict[str, typing.Any] = {
	"evolve_interval_measures": 4,
	"evolve_intensity": 0.3,
	"max_sonic_energy": 2.5,
	"energy_reduction_factor": 0.6,
	"global_density_bias": 0.5,
	"counterpoint_enabled": True,
	"evolution_mode": "classic",
	"scale_locked": False,
	"evolution_enabled": False,
	"energy_management_enabled": True,
}

# Older presets stored global state with camelCase keys.
LEGACY_GLOBALS = {
	"evolveIntervalMeasures": "evolve_interval_measures",
	"evolveIntensity": "evolve_intensity",
	"evolutionIntensity": "evolve_intensity",
	"maxSonicEnergy": "max_sonic_energy",
	"energyReductionFactor": "energy_reduction_factor",
	"globalDensityBias": "global_density_bias",
	"counterpointEnabled": "counterpoint_enabled",
	"evolutionMode": "evolution_mode",
	"scaleLocked": "scale_locked",
	"autoEvolutionEnabled": "evolution_enabled",
	"energyManagementEnabled": "energy_management_enabled",
	"currentScale": "current_scale",
	"globalBaseNote": "base_note",
	"activeLoops": "active_loops",
}


class Ensemble:

	"""
	A set of evolving loops behind a small, forgiving API.

	Parameters:
		max_loops: Number of loop slots (1 to ``MAX_LOOPS``).
		scale: Starting global scale name.  Unknown names raise ``ValueError``.
		base_note: Root note loops are created with.
		seed: Seed for the shared random source; None for a fresh one.
		settings: Evolution settings; defaults to :class:`~evoloop.evolution.EvolutionSettings`.
		energy: Energy manager; a default one is created when omitted.
		clock: Monotonic time source shared by the energy cache and momentum ramp.
	"""

	def __init__ (
		self,
		max_loops: int = evoloop.constants.MAX_LOOPS,
		scale: str = evoloop.constants.DEFAULT_SCALE,
		base_note: int = evoloop.constants.DEFAULT_BASE_NOTE,
		seed: typing.Optional[int] = None,
		settings: typing.Optional[evoloop.evolution.EvolutionSettings] = None,
		energy: typing.Optional[evoloop.energy.EnergyManager] = None,
		clock: typing.Callable[[], float] = time.monotonic
	) -> None:

		evoloop.scales.get_scale(scale)

		self.max_loops = max(1, min(evoloop.constants.MAX_LOOPS, int(max_loops)))
		self.rng = random.Random(seed)
		self.steps_per_measure = 16
		self.step_index = 0

		self.matrix = evoloop.notes_matrix.NotesMatrix(current_scale=scale, base_note=base_note, rng=self.rng)
		self.energy = energy or evoloop.energy.EnergyManager(clock=clock)
		self.energy.attach(self.matrix)
		self.generator = evoloop.melodic_generator.MelodicGenerator(self.matrix, rng=self.rng)
		self.evolution = evoloop.evolution.EvolutionOrchestrator(
			self.matrix,
			self.energy,
			self.generator,
			settings = settings,
			rng = self.rng,
			clock = clock
		)

		self._initialize_slots()

	def _initialize_slots (self) -> None:

		with self.matrix.batch():
			for loop_id in range(self.max_loops):
				if not self.matrix.has_loop(loop_id):
					self.matrix.initialize_loop(loop_id)

	def _check_loop (self, loop_id: int) -> None:

		if not isinstance(loop_id, int) or not 0 <= loop_id < self.max_loops:
			raise ValueError(f"Loop id {loop_id!r} out of range 0..{self.max_loops - 1}")

	@property
	def current_scale (self) -> str:
		return self.matrix.current_scale

	# --- Loops ---

	def set_loop_active (self, loop_id: int, active: bool) -> None:

		"""
		Switch a loop on or off.

		A loop switched on for the first time gets a generated row; an unlocked
		loop still on an older scale is quantized to the current one.
		"""

		self._check_loop(loop_id)

		meta = self.matrix.get_metadata(loop_id)

		with self.matrix.batch():

			self.matrix.set_loop_active(loop_id, active)

			if active and meta is not None and not meta.is_active:

				if not meta.is_locked and meta.scale != self.current_scale:
					self.matrix.quantize_loop(loop_id, self.current_scale)

				if meta.last_pattern is None:
					self.regenerate_loop(loop_id)

		logger.info(f"Loop {loop_id} {'activated' if active else 'deactivated'}")

	def update_loop_metadata (self, loop_id: int, patch: typing.Optional[typing.Dict[str, typing.Any]] = None, **fields: typing.Any) -> None:

		"""Partial metadata update; see :meth:`evoloop.notes_matrix.NotesMatrix.update_loop_metadata`."""

		self._check_loop(loop_id)
		self.matrix.update_loop_metadata(loop_id, patch, **fields)

	def regenerate_loop (self, loop_id: int, pattern_type: typing.Optional[str] = None) -> typing.List[typing.Optional[int]]:

		"""
		Generate a new row for one loop now.

		This is an explicit request, so it works on locked loops too.  The new
		pattern starts at the transport's current position in the loop.
		"""

		self._check_loop(loop_id)

		return self.generator.regenerate_loop(loop_id, pattern_type=pattern_type, start_offset=self.step_index)

	def regenerate_all (self) -> typing.List[int]:

		"""Regenerate every active, unlocked loop.  Returns the ids regenerated."""

		targets = [
			loop_id for loop_id in self.matrix.active_loops()
			if loop_id < self.max_loops and not self.matrix.get_metadata(loop_id).is_locked  # type: ignore[union-attr]
		]

		done = self.generator.regenerate_loops(targets, start_offset=self.step_index)

		logger.info(f"Regenerated loops {done}")

		return done

	def update_scale (self, scale: str) -> bool:

		"""
		Change the global scale and quantize every active, unlocked loop to it.

		Asking for the current scale does nothing and returns False.  An unknown
		name raises ``ValueError`` before any loop changes.
		"""

		if scale == self.current_scale:
			return False

		evoloop.scales.get_scale(scale)

		previous = self.current_scale
		quantized = self.matrix.quantize_all_active_loops(scale, include_locked=False)

		logger.info(f"Scale {previous} -> {scale}, quantized loops {quantized}")

		return True

	def set_loop_density_mode (self, loop_id: int, mode: str) -> None:

		"""``"auto"`` or ``"manual"``."""

		self._check_loop(loop_id)
		self.matrix.update_loop_metadata(loop_id, density_mode=mode)

	def set_manual_density (self, loop_id: int, density: float) -> None:

		"""Set the density used in manual mode (clamped to 0.0-1.0)."""

		self._check_loop(loop_id)
		self.matrix.update_loop_metadata(loop_id, manual_density=density)

	def set_loop_volume (self, loop_id: int, volume: float) -> None:

		"""Set a loop's volume (clamped to 0.0-1.0)."""

		self._check_loop(loop_id)
		self.matrix.update_loop_metadata(loop_id, volume=volume)

	def set_generation_mode (self, loop_id: int, mode: str) -> None:

		"""``"auto"`` or ``"locked"``; a locked loop is never touched by evolution."""

		self._check_loop(loop_id)
		self.matrix.update_loop_metadata(loop_id, generation_mode=mode)

	def get_loop_notes (self, loop_id: int) -> typing.List[typing.Optional[int]]:

		"""The loop's row, exactly ``length`` cells long."""

		self._check_loop(loop_id)
		return self.matrix.get_loop_notes(loop_id)

	def get_effective_density (self, loop_id: int) -> float:

		self._check_loop(loop_id)
		return self.matrix.get_effective_density(loop_id)

	# --- Global parameters ---

	def set_global (self, name: str, value: typing.Any) -> None:

		"""
		Set one global parameter, clamped to its documented range.

		Names: ``evolve_interval_measures`` (1-64), ``evolve_intensity`` (0.1-1.0),
		``max_sonic_energy`` (1.0-10.0), ``energy_reduction_factor`` (0.1-1.0),
		``global_density_bias`` (0.0-1.0), ``counterpoint_enabled``,
		``evolution_mode``, ``scale_locked``, ``evolution_enabled`` and
		``energy_management_enabled``.
		"""

		settings = self.evolution.settings

		if name == "evolve_interval_measures":
			settings.interval_measures = max(1, min(64, int(value)))

		elif name == "evolve_intensity":
			settings.intensity = max(0.1, min(1.0, float(value)))

		elif name == "max_sonic_energy":
			self.energy.max_sonic_energy = max(1.0, min(10.0, float(value)))
			self.energy.invalidate()

		elif name == "energy_reduction_factor":
			self.energy.energy_reduction_factor = max(0.1, min(1.0, float(value)))

		elif name == "global_density_bias":
			bias = max(0.0, min(1.0, float(value)))
			self.evolution.global_density_bias = bias
			self.energy.apply_adaptive_density(self.matrix, bias)

		elif name == "counterpoint_enabled":
			self.generator.counterpoint_enabled = bool(value)

		elif name == "evolution_mode":
			if value not in evoloop.evolution.EVOLUTION_MODES:
				raise ValueError(f"Unknown evolution mode {value!r}. Available: {list(evoloop.evolution.EVOLUTION_MODES)}")
			settings.mode = value

		elif name == "scale_locked":
			settings.scale_locked = bool(value)

		elif name == "evolution_enabled":
			if value:
				self.evolution.enable()
			else:
				self.evolution.stop()

		elif name == "energy_management_enabled":
			self.energy.enabled = bool(value)

		else:
			raise ValueError(f"Unknown global parameter {name!r}. Available: {list(GLOBAL_DEFAULTS)}")

		logger.debug(f"Global {name} = {value!r}")

	def get_globals (self) -> typing.Dict[str, typing.Any]:

		"""Current value of every global parameter."""

		settings = self.evolution.settings

		return {
			"evolve_interval_measures": settings.interval_measures,
			"evolve_intensity": settings.intensity,
			"max_sonic_energy": self.energy.max_sonic_energy,
			"energy_reduction_factor": self.energy.energy_reduction_factor,
			"global_density_bias": self.evolution.global_density_bias,
			"counterpoint_enabled": self.generator.counterpoint_enabled,
			"evolution_mode": settings.mode,
			"scale_locked": settings.scale_locked,
			"evolution_enabled": self.evolution.enabled,
			"energy_management_enabled": self.energy.enabled,
		}

	# --- Transport ---

	def on_step (self, step_index: int) -> typing.Optional[evoloop.evolution.EvolutionPlan]:

		"""Advance to ``step_index``; runs an evolution tick when a due measure starts."""

		self.step_index = step_index

		return self.evolution.on_step(step_index, self.steps_per_measure)

	# --- Persistence ---

	def export_state (self) -> typing.Dict[str, typing.Any]:

		"""Plain dict with ``notes``, ``metadata`` and ``global_state``."""

		matrix_state = self.matrix.export_state()

		global_state = dict(self.get_globals())
		global_state.update(matrix_state["state"])

		return {
			"notes": matrix_state["notes"],
			"metadata": matrix_state["metadata"],
			"global_state": global_state,
		}

	def import_state (self, data: typing.Optional[typing.Dict[str, typing.Any]]) -> None:

		"""
		Load exported state, filling anything missing with defaults.

		Legacy camelCase keys are understood.  A stored scale that is no longer
		known falls back to the ensemble's current scale with a warning.  Global
		values are clamped exactly as :meth:`set_global` clamps them.
		"""

		data = data or {}
		raw_globals = data.get("global_state", data.get("globalState", data.get("state"))) or {}

		global_state: typing.Dict[str, typing.Any] = {}

		for key, value in raw_globals.items():
			global_state[LEGACY_GLOBALS.get(key, key)] = value

		matrix_state = {
			key: global_state[key]
			for key in ("current_scale", "base_note", "active_loops")
			if key in global_state
		}

		self.matrix.import_state(
			{
				"notes": data.get("notes"),
				"metadata": data.get("metadata"),
				"state": matrix_state,
			},
			fallback_scale = self.current_scale
		)

		self._initialize_slots()

		for name, default in GLOBAL_DEFAULTS.items():

			value = global_state.get(name, default)

			if name == "global_density_bias":
				# Stored loops already carry their auto densities.
				try:
					self.evolution.global_density_bias = max(0.0, min(1.0, float(value)))
				except (TypeError, ValueError):
					logger.warning(f"Imported global {name}={value!r} is invalid, using {default!r}")
					self.evolution.global_density_bias = default
				continue

			try:
				self.set_global(name, value)
			except (TypeError, ValueError):
				logger.warning(f"Imported global {name}={value!r} is invalid, using {default!r}")
				self.set_global(name, default)

		logger.info(f"State imported: scale {self.current_scale}, active loops {self.matrix.active_loops()}")
