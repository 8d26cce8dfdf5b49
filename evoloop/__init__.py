"""
evoloop - self-evolving multi-loop melodic pattern generation for Python.

A fixed bank of loops, each a short step sequence with its own scale, range,
density and volume, is filled by algorithmic generators and then left to
evolve.  Once per due measure the evolution orchestrator plans a round of
changes (a new global scale, regenerations, density nudges, transpositions),
reduces the plan to what actually needs doing and applies it in one batch.
An energy manager keeps the combined busyness of the mix under a ceiling.

It generates pure MIDI (no audio engine) through ``mido``, so any hardware or
software synth can play it.

Building blocks:

- **Pattern generators.** Euclidean pulses with a wandering contour, a "lead
  and tail" scale traversal, and an even-coverage random generator, all driven
  by an explicit ``random.Random`` so a seed reproduces a pattern.
- **Counterpoint.** Notes that collide with another loop on the same step are
  moved to the nearest free scale tone.
- **Notes matrix.** One owned store for every loop's notes and metadata, with
  batched change notification and a never-silent invariant.
- **Energy management.** ``density x volume x (16 / length)`` per loop, with
  cached measurement and even, bounded turn-downs.
- **Evolution modes.** classic, momentum, call and response, and tension and
  release.

Minimal example:

    ```python
    import evoloop

    ensemble = evoloop.Ensemble(scale="dorian", seed=42)
    ensemble.set_loop_active(0, True)
    ensemble.set_loop_active(1, True)
    ensemble.set_global("evolution_enabled", True)

    transport = evoloop.Transport(ensemble, bpm=110)
    transport.play()
    ```

Package-level exports: ``Ensemble``, ``Transport``, ``EvolutionSettings``, ``register_scale``.
"""

import evoloop.ensemble
import evoloop.evolution
import evoloop.scales
import evoloop.transport


Ensemble = evoloop.ensemble.Ensemble
Transport = evoloop.transport.Transport
EvolutionSettings = evoloop.evolution.EvolutionSettings
register_scale = evoloop.scales.register_scale
