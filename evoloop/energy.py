"""Sonic energy - a single number for how busy and loud the active loops are.

Each active loop contributes ``effective_density * volume * (16 / length)``.
Short loops repeat more often per bar, so at equal density and volume they
count for more.  When the total passes ``max_sonic_energy`` the manager turns
every active loop down by the same factor instead of muting any one of them.
"""

import dataclasses
import logging
import time
import typing

import evoloop.constants
import evoloop.easing
import evoloop.notes_matrix


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class EnergySnapshot:

	"""Per-loop contributions and their sum at one moment."""

	contributions: typing.Dict[int, float]
	total: float


class EnergyManager:

	"""
	Measure sonic energy and keep it under a ceiling.

	Energy is cached for ``cache_ttl`` seconds.  The cache is also dropped the
	moment any attached matrix reports a change, and before every balancing
	decision, so a density or volume edit is never hidden behind the TTL.

	Parameters:
		max_sonic_energy: Ceiling for the total (1.0-10.0).
		energy_reduction_factor: Multiplier applied per balancing pass (0.1-1.0).
		min_dynamic_density: Auto density at ``global_bias = 0``.
		max_dynamic_density: Auto density at ``global_bias = 1``.
		enabled: When False, balancing and adaptive density do nothing.
		cache_ttl: Seconds a computed snapshot stays valid.
		max_balance_passes: Upper bound on reduction passes per check.
		min_volume: Balancing never pushes a loop's volume below this.
		density_shape: Easing applied when mapping the bias to a density.
		clock: Monotonic time source for the cache.
	"""

	def __init__ (
		self,
		max_sonic_energy: float = 2.5,
		energy_reduction_factor: float = 0.6,
		min_dynamic_density: float = 0.15,
		max_dynamic_density: float = 0.85,
		enabled: bool = True,
		cache_ttl: float = 0.25,
		max_balance_passes: int = 8,
		min_volume: float = 0.05,
		density_shape: typing.Union[str, evoloop.easing.EasingFn] = "linear",
		clock: typing.Callable[[], float] = time.monotonic
	) -> None:

		self.max_sonic_energy = max(1.0, min(10.0, float(max_sonic_energy)))
		self.energy_reduction_factor = max(0.1, min(1.0, float(energy_reduction_factor)))
		self.min_dynamic_density = max(0.0, min(1.0, float(min_dynamic_density)))
		self.max_dynamic_density = max(self.min_dynamic_density, min(1.0, float(max_dynamic_density)))
		self.enabled = enabled
		self.cache_ttl = max(0.0, float(cache_ttl))
		self.max_balance_passes = max(1, int(max_balance_passes))
		self.min_volume = max(0.0, min(1.0, float(min_volume)))
		self.density_shape = density_shape
		self.clock = clock

		evoloop.easing.get_easing(density_shape)

		self._cache: typing.Optional[typing.Tuple[int, float, EnergySnapshot]] = None

	def attach (self, matrix: evoloop.notes_matrix.NotesMatrix) -> None:

		"""Drop the cache on every write to ``matrix``, including writes inside a batch."""

		matrix.events.on("written", self._on_matrix_changed)

	def _on_matrix_changed (self, loop_ids: typing.Set[int]) -> None:
		self.invalidate()

	def invalidate (self) -> None:

		"""Forget the cached snapshot."""

		self._cache = None

	def _measure (self, matrix: evoloop.notes_matrix.NotesMatrix) -> EnergySnapshot:

		contributions: typing.Dict[int, float] = {}

		for loop_id in matrix.active_loops():

			meta = matrix.get_metadata(loop_id)

			if meta is None or meta.length <= 0:
				continue

			contributions[loop_id] = meta.effective_density * meta.volume * (evoloop.constants.REFERENCE_LENGTH / meta.length)

		return EnergySnapshot(contributions=contributions, total=sum(contributions.values()))

	def snapshot (self, matrix: evoloop.notes_matrix.NotesMatrix) -> EnergySnapshot:

		"""Current energy, from the cache when it is still valid for this matrix."""

		now = self.clock()

		if self._cache is not None:
			matrix_id, stamp, cached = self._cache
			if matrix_id == id(matrix) and now - stamp < self.cache_ttl:
				return cached

		result = self._measure(matrix)
		self._cache = (id(matrix), now, result)

		return result

	def compute_energy (self, matrix: evoloop.notes_matrix.NotesMatrix) -> float:

		"""Total sonic energy of the active loops."""

		return self.snapshot(matrix).total

	def adaptive_density_target (self, global_bias: float) -> float:

		"""
		Map ``global_bias`` (0.0-1.0) onto ``[min_dynamic_density, max_dynamic_density]``.

		Example:
			```python
			EnergyManager().adaptive_density_target(0.5)  # → 0.5
			```
		"""

		return evoloop.easing.map_value(
			global_bias,
			out_min = self.min_dynamic_density,
			out_max = self.max_dynamic_density,
			shape = self.density_shape
		)

	def apply_adaptive_density (self, matrix: evoloop.notes_matrix.NotesMatrix, global_bias: float) -> typing.List[int]:

		"""Write the density target to every auto-mode loop.  Manual loops are left alone."""

		if not self.enabled:
			return []

		target = self.adaptive_density_target(global_bias)
		updated: typing.List[int] = []

		with matrix.batch():
			for loop_id in matrix.loop_ids():
				meta = matrix.get_metadata(loop_id)
				if meta is not None and meta.density_mode == "auto":
					matrix.update_loop_metadata(loop_id, auto_density=target)
					updated.append(loop_id)

		self.invalidate()

		logger.debug(f"Adaptive density {target:.2f} applied to loops {updated}")

		return updated

	def check_and_balance (self, matrix: evoloop.notes_matrix.NotesMatrix) -> bool:

		"""
		Turn active loops down until energy is back under the ceiling.

		Each pass multiplies every active loop's volume, and the auto density of
		auto-mode loops, by ``energy_reduction_factor``.  Volume stops at
		``min_volume``; manual densities are never changed.  Returns True when
		any adjustment was made.
		"""

		if not self.enabled:
			return False

		self.invalidate()
		energy = self._measure(matrix).total

		if energy <= self.max_sonic_energy:
			return False

		start = energy
		passes = 0

		with matrix.batch():

			while energy > self.max_sonic_energy and passes < self.max_balance_passes:

				passes += 1
				moved = False

				for loop_id in matrix.active_loops():

					meta = matrix.get_metadata(loop_id)

					if meta is None:
						continue

					patch: typing.Dict[str, float] = {}
					volume = max(self.min_volume, meta.volume * self.energy_reduction_factor)

					if volume < meta.volume:
						patch["volume"] = volume

					if meta.density_mode == "auto":
						density = meta.auto_density * self.energy_reduction_factor
						if density < meta.auto_density:
							patch["auto_density"] = density

					if patch:
						matrix.update_loop_metadata(loop_id, patch)
						moved = True

				energy = self._measure(matrix).total

				if not moved:
					break

		self.invalidate()

		if energy > self.max_sonic_energy:
			logger.warning(f"Energy {energy:.2f} still above ceiling {self.max_sonic_energy:.2f} after {passes} balancing passes")
		else:
			logger.info(f"Energy balanced {start:.2f} -> {energy:.2f} (ceiling {self.max_sonic_energy:.2f}, {passes} passes)")

		return True

	def get_metrics (self, matrix: evoloop.notes_matrix.NotesMatrix) -> typing.Dict[str, typing.Any]:

		"""Energy figures for display."""

		energy = self.compute_energy(matrix)

		return {
			"current_energy": round(energy, 2),
			"max_energy": self.max_sonic_energy,
			"energy_percentage": round(energy / self.max_sonic_energy * 100),
			"active_loops": len(matrix.active_loops()),
			"is_over_limit": energy > self.max_sonic_energy,
			"reduction_factor": self.energy_reduction_factor,
		}

	def suggest_optimizations (self, matrix: evoloop.notes_matrix.NotesMatrix) -> typing.List[typing.Dict[str, str]]:

		"""Human-readable hints for a crowded mix."""

		metrics = self.get_metrics(matrix)
		suggestions: typing.List[typing.Dict[str, str]] = []

		if metrics["is_over_limit"]:
			suggestions.append({"type": "volume_reduction", "message": "Lower the overall volume to avoid saturation", "severity": "high"})

		if metrics["active_loops"] > 6:
			suggestions.append({"type": "loop_count", "message": "Consider deactivating some loops for clarity", "severity": "medium"})

		if metrics["energy_percentage"] > 85:
			suggestions.append({"type": "density_reduction", "message": "Thin out patterns to leave more space", "severity": "medium"})

		return suggestions
