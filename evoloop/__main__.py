import argparse
import dataclasses
import inspect
import logging
import os
import typing

import yaml

import evoloop.energy
import evoloop.ensemble
import evoloop.evolution
import evoloop.transport


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def load_config (config_path: str = 'config.yaml') -> dict:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		return yaml.safe_load(f) or {}


def _known (section: typing.Dict[str, typing.Any], allowed: typing.Iterable[str], label: str) -> typing.Dict[str, typing.Any]:

	"""Keep the keys a constructor accepts; warn about the rest."""

	allowed = set(allowed)
	unknown = sorted(set(section) - allowed)

	if unknown:
		logger.warning(f"Ignoring unknown {label} settings: {unknown}")

	return {key: value for key, value in section.items() if key in allowed}


def build (config: typing.Dict[str, typing.Any]) -> evoloop.transport.Transport:

	"""
	Create the ensemble and transport described by a config dict.
	"""

	ensemble_cfg = config.get('ensemble') or {}
	transport_cfg = config.get('transport') or {}
	midi_cfg = config.get('midi') or {}
	evolution_cfg = dict(config.get('evolution') or {})
	evolve = evolution_cfg.pop('enabled', True)

	settings = evoloop.evolution.EvolutionSettings(**_known(
		evolution_cfg,
		(field.name for field in dataclasses.fields(evoloop.evolution.EvolutionSettings)),
		"evolution"
	))

	energy_params = [name for name in inspect.signature(evoloop.energy.EnergyManager).parameters if name != 'clock']
	energy = evoloop.energy.EnergyManager(**_known(config.get('energy') or {}, energy_params, "energy"))

	ensemble = evoloop.ensemble.Ensemble(
		scale = ensemble_cfg.get('scale', 'major'),
		base_note = ensemble_cfg.get('base_note', 60),
		seed = ensemble_cfg.get('seed'),
		settings = settings,
		energy = energy
	)

	transport = evoloop.transport.Transport(
		ensemble,
		output_device_name = midi_cfg.get('device_name'),
		steps_per_measure = transport_cfg.get('steps_per_measure', 16),
		bpm = transport_cfg.get('bpm', 120)
	)

	for loop_id in ensemble_cfg.get('active_loops', [0, 1]):
		ensemble.set_loop_active(int(loop_id), True)

	if evolve:
		ensemble.set_global('evolution_enabled', True)

	return transport


def main () -> None:

	"""
	Main entry point for the evoloop application.
	"""

	parser = argparse.ArgumentParser(prog="evoloop", description="Play self-evolving melodic loops over MIDI.")
	parser.add_argument("--config", default="config.yaml", help="YAML config file (default: config.yaml)")
	args = parser.parse_args()

	logger.info("evoloop starting...")

	config = load_config(args.config)
	transport = build(config)

	transport.play()


if __name__ == "__main__":
	main()
