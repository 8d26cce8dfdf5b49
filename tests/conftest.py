import typing

import mido
import pytest

import evoloop.scales


class FakeMidiOut:

	"""In-memory MIDI output that records every message sent to it."""

	def __init__ (self, name: str) -> None:

		self.name = name
		self.sent: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Record an outgoing MIDI message."""

		self.sent.append(message)

	def close (self) -> None:

		"""Mark the fake device closed."""

		self.closed = True


class FakeMidi:

	"""Holds the fake ports opened during a test."""

	def __init__ (self) -> None:

		self.output_names = ["Dummy MIDI", "Second Dummy"]
		self.opened: typing.List[FakeMidiOut] = []

	def get_output_names (self) -> typing.List[str]:

		"""Return the fake device names."""

		return list(self.output_names)

	def open_output (self, name: str) -> FakeMidiOut:

		"""Return a recording fake output regardless of the name."""

		port = FakeMidiOut(name)
		self.opened.append(port)
		return port

	@property
	def port (self) -> FakeMidiOut:

		"""The most recently opened port."""

		return self.opened[-1]


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> FakeMidi:

	"""Patch mido to use in-memory MIDI outputs for tests that need them."""

	fake = FakeMidi()

	monkeypatch.setattr(mido, "get_output_names", fake.get_output_names)
	monkeypatch.setattr(mido, "open_output", fake.open_output)

	return fake


@pytest.fixture
def scale_registry (monkeypatch: pytest.MonkeyPatch) -> typing.Dict[str, typing.List[int]]:

	"""Give the test a private copy of the scale registry."""

	registry = dict(evoloop.scales.SCALE_DEFINITIONS)
	monkeypatch.setattr(evoloop.scales, "SCALE_DEFINITIONS", registry)

	return registry
