import logging
import typing

import pytest

import evoloop
import evoloop.ensemble
import evoloop.scales


def _ensemble (active: typing.Iterable[int] = (0, 1, 2), **kwargs: typing.Any) -> evoloop.ensemble.Ensemble:

	ensemble = evoloop.Ensemble(seed=7, **kwargs)

	for loop_id in active:
		ensemble.set_loop_active(loop_id, True)

	return ensemble


# --- Construction ---


def test_slots_are_initialised_inactive () -> None:

	ensemble = evoloop.Ensemble(max_loops=4)

	assert ensemble.matrix.loop_ids() == [0, 1, 2, 3]
	assert ensemble.matrix.active_loops() == []


def test_unknown_scale_rejected () -> None:

	with pytest.raises(ValueError):
		evoloop.Ensemble(scale="klingon")


def test_loop_id_outside_slots () -> None:

	ensemble = evoloop.Ensemble(max_loops=4)

	with pytest.raises(ValueError):
		ensemble.set_loop_active(4, True)

	with pytest.raises(ValueError):
		ensemble.get_loop_notes(-1)


# --- Loops ---


def test_first_activation_generates_a_row () -> None:

	ensemble = _ensemble(active=[], scale="dorian", base_note=50)
	ensemble.set_loop_active(0, True)

	meta = ensemble.matrix.get_metadata(0)
	notes = ensemble.get_loop_notes(0)

	assert meta.is_active
	assert meta.last_pattern in ("euclidean", "scale", "random")
	assert len(notes) == meta.length
	assert any(note is not None for note in notes)
	assert all((note - 50) % 12 in evoloop.scales.get_scale("dorian") for note in notes if note is not None)


def test_reactivation_quantizes_to_current_scale () -> None:

	ensemble = _ensemble(active=[0])
	ensemble.set_loop_active(0, False)
	ensemble.update_loop_metadata(0, scale="minor")

	ensemble.set_loop_active(0, True)

	assert ensemble.matrix.get_metadata(0).scale == ensemble.current_scale


def test_setters_clamp () -> None:

	ensemble = _ensemble(active=[0])

	ensemble.set_loop_volume(0, 3.0)
	ensemble.set_manual_density(0, -1.0)
	ensemble.set_loop_density_mode(0, "manual")

	meta = ensemble.matrix.get_metadata(0)

	assert meta.volume == 1.0
	assert meta.manual_density == 0.0
	assert ensemble.get_effective_density(0) == 0.0

	with pytest.raises(ValueError):
		ensemble.set_loop_density_mode(0, "sometimes")


def test_regenerate_loop_works_on_locked_loop () -> None:

	ensemble = _ensemble(active=[0])
	ensemble.set_generation_mode(0, "locked")
	ensemble.matrix.update_loop_metadata(0, last_pattern=None)

	ensemble.regenerate_loop(0, pattern_type="euclidean")

	assert ensemble.matrix.get_metadata(0).last_pattern == "euclidean"


def test_regenerate_all_skips_locked () -> None:

	ensemble = _ensemble()
	ensemble.set_generation_mode(1, "locked")
	locked_notes = ensemble.get_loop_notes(1)

	assert ensemble.regenerate_all() == [0, 2]
	assert ensemble.get_loop_notes(1) == locked_notes


# --- Scale ---


def test_update_scale_to_current_is_a_no_op (monkeypatch: pytest.MonkeyPatch) -> None:

	ensemble = _ensemble()
	calls: typing.List[typing.Any] = []
	events: typing.List[typing.Set[int]] = []
	before = ensemble.export_state()

	monkeypatch.setattr(ensemble.matrix, "quantize_loop", lambda *args, **kwargs: calls.append(args))
	monkeypatch.setattr(ensemble.matrix, "quantize_all_active_loops", lambda *args, **kwargs: calls.append(args))
	ensemble.matrix.events.on("changed", events.append)

	assert ensemble.update_scale("major") is False
	assert calls == []
	assert events == []
	assert ensemble.export_state() == before


def test_update_scale_quantizes_active_unlocked_loops () -> None:

	ensemble = _ensemble()
	ensemble.set_generation_mode(2, "locked")

	assert ensemble.update_scale("phrygian") is True
	assert ensemble.current_scale == "phrygian"
	assert ensemble.matrix.get_metadata(0).scale == "phrygian"
	assert ensemble.matrix.get_metadata(1).scale == "phrygian"
	assert ensemble.matrix.get_metadata(2).scale == "major"
	assert ensemble.matrix.get_metadata(5).scale == "major"

	for note in ensemble.get_loop_notes(0):
		if note is not None:
			assert (note - 60) % 12 in evoloop.scales.get_scale("phrygian")


def test_failed_update_scale_changes_nothing () -> None:

	ensemble = _ensemble()
	before = ensemble.export_state()

	with pytest.raises(ValueError):
		ensemble.update_scale("klingon")

	assert ensemble.export_state() == before
	assert ensemble.current_scale == "major"


# --- Globals ---


def test_set_global_clamps () -> None:

	ensemble = _ensemble()

	ensemble.set_global("evolve_interval_measures", 100)
	ensemble.set_global("evolve_intensity", 0.0)
	ensemble.set_global("max_sonic_energy", 0.5)
	ensemble.set_global("energy_reduction_factor", 5)

	values = ensemble.get_globals()

	assert values["evolve_interval_measures"] == 64
	assert values["evolve_intensity"] == 0.1
	assert values["max_sonic_energy"] == 1.0
	assert values["energy_reduction_factor"] == 1.0


def test_global_density_bias_drives_auto_density () -> None:

	ensemble = _ensemble()
	ensemble.set_loop_density_mode(1, "manual")
	ensemble.set_manual_density(1, 0.6)

	ensemble.set_global("global_density_bias", 2.0)

	assert ensemble.get_globals()["global_density_bias"] == 1.0
	assert ensemble.get_effective_density(0) == pytest.approx(0.85)
	assert ensemble.get_effective_density(1) == pytest.approx(0.6)


def test_set_global_rejects_unknown () -> None:

	ensemble = _ensemble()

	with pytest.raises(ValueError, match="Available"):
		ensemble.set_global("tempo", 120)

	with pytest.raises(ValueError):
		ensemble.set_global("evolution_mode", "chaos")


def test_volume_change_is_seen_by_energy_immediately () -> None:

	ensemble = _ensemble(active=[0])
	ensemble.set_loop_volume(0, 1.0)
	first = ensemble.energy.compute_energy(ensemble.matrix)

	ensemble.set_loop_volume(0, 0.5)

	assert ensemble.energy.compute_energy(ensemble.matrix) == pytest.approx(first / 2)


def test_on_step_runs_evolution () -> None:

	ensemble = _ensemble()
	ensemble.set_global("evolve_interval_measures", 1)
	ensemble.set_global("evolution_enabled", True)

	for step in range(16 * 4):
		ensemble.on_step(step)

	assert ensemble.evolution.tick_count == 4
	assert ensemble.step_index == 16 * 4 - 1


# --- Persistence ---


def test_export_import_round_trip () -> None:

	source = _ensemble(scale="dorian", base_note=50)
	source.set_global("evolve_intensity", 0.7)
	source.set_global("evolution_mode", "tension_release")
	source.set_generation_mode(2, "locked")

	target = evoloop.Ensemble(seed=99)
	target.import_state(source.export_state())

	assert target.export_state() == source.export_state()
	assert target.current_scale == "dorian"
	assert target.matrix.active_loops() == [0, 1, 2]


def test_import_empty_state_gives_defaults () -> None:

	ensemble = _ensemble()
	ensemble.set_global("evolve_intensity", 0.9)

	ensemble.import_state({})

	assert ensemble.get_globals() == evoloop.ensemble.GLOBAL_DEFAULTS
	assert ensemble.matrix.active_loops() == []
	assert ensemble.matrix.loop_ids() == list(range(16))


def test_import_legacy_preset (caplog: pytest.LogCaptureFixture) -> None:

	data = {
		"globalState": {
			"currentScale": "harmonicMinor",
			"evolveIntensity": 0.8,
			"maxSonicEnergy": 50,
			"evolutionMode": "chaos",
			"activeLoops": [0],
		},
		"notes": {"0": [57, None, 60, 64]},
		"metadata": {"0": {"scale": [0, 2, 4], "length": 4, "baseNote": 57}},
	}

	ensemble = evoloop.Ensemble(seed=1)

	with caplog.at_level(logging.WARNING):
		ensemble.import_state(data)

	values = ensemble.get_globals()

	assert ensemble.current_scale == "harmonic_minor"
	assert values["evolve_intensity"] == pytest.approx(0.8)
	assert values["max_sonic_energy"] == 10.0
	assert values["evolution_mode"] == "classic"
	assert ensemble.matrix.active_loops() == [0]
	assert ensemble.get_loop_notes(0) == [57, None, 60, 64]
	assert ensemble.matrix.get_metadata(0).scale == "harmonic_minor"
	assert "chaos" in caplog.text
