import typing


CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	A minimal synchronous observer registry.

	The core is single-threaded, so listeners run inline in registration order
	on the caller's stack.
	"""

	def __init__ (self) -> None:

		"""
		Initialize an empty event registry.
		"""

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}


	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		self._listeners.setdefault(event_name, []).append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if event_name not in self._listeners or callback not in self._listeners[event_name]:
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)


	def listener_count (self, event_name: str) -> int:

		"""Number of callbacks registered for an event."""

		return len(self._listeners.get(event_name, []))


	def emit (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call every listener for an event.  Exceptions propagate to the emitter's caller.
		"""

		# Copy so a listener may unregister itself while being called.
		for callback in list(self._listeners.get(event_name, [])):
			callback(*args, **kwargs)
