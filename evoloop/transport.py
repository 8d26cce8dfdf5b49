"""MIDI playback boundary.

The transport polls the ensemble one step at a time and turns the notes it
finds into ``mido`` messages.  It only reads the notes matrix; any change to
the music happens in :meth:`evoloop.ensemble.Ensemble.on_step`, which the
transport calls after each step's notes have been sent.

Every note lasts one step: it is released just before the next step's notes
start.
"""

import logging
import time
import typing

import mido

import evoloop.constants
import evoloop.ensemble


logger = logging.getLogger(__name__)


def select_output_device (device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Open a MIDI output port.

	With ``device_name`` the named port is opened.  Without it the first
	available port is used.  Returns ``(name, port)``, or ``(None, None)``
	when nothing suitable exists.
	"""

	outputs = mido.get_output_names()
	logger.info(f"Available MIDI outputs: {outputs}")

	if not outputs:
		logger.error("No MIDI output devices found.")
		return None, None

	if device_name is not None and device_name not in outputs:
		logger.error(f"MIDI output device '{device_name}' not found. Available devices: {outputs}")
		return None, None

	selected = device_name if device_name is not None else outputs[0]
	port = mido.open_output(selected)

	logger.info(f"Opened MIDI output: {selected}")

	return selected, port


class Transport:

	"""
	Step clock that plays an ensemble over MIDI.

	Parameters:
		ensemble: The loops to play.
		output_device_name: Port to open; None picks the first available one.
		steps_per_measure: Steps in one measure; evolution ticks fire on measure starts.
		note_velocity: Velocity at volume 1.0; each loop's volume scales it.
		bpm: Tempo used by :meth:`play`.  Four steps make one beat.
	"""

	def __init__ (
		self,
		ensemble: evoloop.ensemble.Ensemble,
		output_device_name: typing.Optional[str] = None,
		steps_per_measure: int = 16,
		note_velocity: int = evoloop.constants.DEFAULT_VELOCITY,
		bpm: float = 120.0
	) -> None:

		self.ensemble = ensemble
		self.output_device_name = output_device_name
		self.steps_per_measure = max(1, int(steps_per_measure))
		self.note_velocity = max(evoloop.constants.MIN_VELOCITY, min(evoloop.constants.MAX_VELOCITY, int(note_velocity)))
		self.bpm = bpm
		self.step_index = 0

		self.ensemble.steps_per_measure = self.steps_per_measure

		self.midi_out: typing.Optional[typing.Any] = None
		self._sounding: typing.List[typing.Tuple[int, int]] = []

	@property
	def step_duration (self) -> float:

		"""Seconds per step at the current tempo (sixteenth notes)."""

		return 60.0 / self.bpm / 4

	def _port (self) -> typing.Optional[typing.Any]:

		if self.midi_out is None:
			self.output_device_name, self.midi_out = select_output_device(self.output_device_name)

		return self.midi_out

	def _send (self, message: mido.Message) -> None:

		port = self._port()

		if port is None:
			return

		try:
			port.send(message)
		except Exception:
			logger.exception(f"MIDI send failed for {message}")

	def _release (self) -> None:

		for channel, note in self._sounding:
			self._send(mido.Message('note_off', channel=channel, note=note, velocity=0))

		self._sounding = []

	def advance (self) -> int:

		"""
		Play one step and move on.

		Releases the previous step's notes, starts the notes every active loop
		holds at ``step % length``, then lets the ensemble evolve.  Returns the
		step index that was played.
		"""

		step = self.step_index

		self._release()

		for loop_id in self.ensemble.matrix.active_loops():

			meta = self.ensemble.matrix.get_metadata(loop_id)
			note = self.ensemble.matrix.get_note(loop_id, step)

			if meta is None or note is None:
				continue

			velocity = int(round(self.note_velocity * meta.volume))

			if velocity <= 0:
				continue

			self._send(mido.Message('note_on', channel=meta.channel, note=note, velocity=min(evoloop.constants.MAX_VELOCITY, velocity)))
			self._sounding.append((meta.channel, note))

		self.ensemble.on_step(step)
		self.step_index += 1

		return step

	def run (self, steps: int) -> None:

		"""Advance ``steps`` steps back to back with no pacing (simulation and tests)."""

		for _ in range(steps):
			self.advance()

	def play (self) -> None:

		"""Advance in real time until interrupted."""

		logger.info(f"Playing at {self.bpm} BPM, {self.steps_per_measure} steps per measure")

		next_time = time.perf_counter()

		try:
			while True:
				self.advance()
				next_time += self.step_duration
				delay = next_time - time.perf_counter()
				if delay > 0:
					time.sleep(delay)

		except KeyboardInterrupt:
			logger.info("Stopping...")

		finally:
			self.close()

	def close (self) -> None:

		"""Release sounding notes and close the port."""

		if self.midi_out is None:
			return

		self._release()

		try:
			self.midi_out.close()
		except Exception:
			logger.exception("MIDI port close failed")

		self.midi_out = None
