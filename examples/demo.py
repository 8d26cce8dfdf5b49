"""
evoloop Demo - four evolving loops in D dorian

A small ensemble that keeps rewriting itself.  Run it with a synth listening
on the first available MIDI output (loops play on channels 1-4).

How to read this file
---------------------
1. Ensemble   - Create the loops' shared scale, root and random seed.
2. Loops      - Shape each loop: length, register, density, volume, generator.
3. Evolution  - Choose how often and how strongly the loops change.
4. Play       - Start the transport.  Press Ctrl+C to stop.

Musical overview
----------------
A bass loop of 16 steps sits under a 12-step arpeggio and a 7-step lead, so
the three cycle against each other.  A fourth, locked pad loop never changes
and anchors the harmony.  Every two measures evolution picks a new global
scale, regenerates or thins a couple of loops and transposes others; the
energy manager turns everything down together if the mix gets too busy.
"""

import logging

import evoloop


logging.basicConfig(level=logging.INFO)


# --- Ensemble ---

ensemble = evoloop.Ensemble(scale="dorian", base_note=50, seed=11)


# --- Loops ---

# Bass: low, sparse, Euclidean.
ensemble.update_loop_metadata(0, length=16, note_range_min=36, note_range_max=55, pattern_probabilities={"euclidean": 1.0, "scale": 0.0, "random": 0.0})

# Arpeggio: lead and tail runs through the middle register.
ensemble.update_loop_metadata(1, length=12, note_range_min=55, note_range_max=79, pattern_probabilities={"euclidean": 0.0, "scale": 1.0, "random": 0.0}, volume=0.6)

# Lead: odd length, hand-set density.
ensemble.update_loop_metadata(2, length=7, note_range_min=67, note_range_max=88, volume=0.4)
ensemble.set_loop_density_mode(2, "manual")
ensemble.set_manual_density(2, 0.3)

# Pad: generated once, then locked.
ensemble.update_loop_metadata(3, length=32, note_range_min=48, note_range_max=67, volume=0.3)

for loop_id in range(4):
	ensemble.set_loop_active(loop_id, True)

ensemble.set_generation_mode(3, "locked")


# --- Evolution ---

ensemble.set_global("evolve_interval_measures", 2)
ensemble.set_global("evolve_intensity", 0.5)
ensemble.set_global("evolution_mode", "classic")
ensemble.set_global("global_density_bias", 0.4)
ensemble.set_global("evolution_enabled", True)


# --- Play ---

if __name__ == "__main__":
	transport = evoloop.Transport(ensemble, bpm=104)
	transport.play()
