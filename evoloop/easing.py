"""Ramp shapes for the momentum mode and the adaptive density target.

A shape maps progress *t* in [0, 1] to [0, 1] with f(0) = 0, f(1) = 1 and no
dips in between.  Anywhere evoloop takes a ``shape`` it accepts either one of
the names below or a plain callable:

    settings = EvolutionSettings(mode="momentum", momentum_shape="ease_out")
    settings = EvolutionSettings(mode="momentum", momentum_shape=lambda t: t ** 0.5)

Named shapes:

    "linear"       Intensity or density follows the input directly.
    "ease_in"      Quiet for a while, then climbs (the momentum default).
    "ease_out"     Climbs early, then settles.
    "ease_in_out"  Smoothstep; gentle at both ends.
"""

import typing


EasingFn = typing.Callable[[float], float]


def power_curve (exponent: float, mirrored: bool = False) -> EasingFn:

	"""
	Build ``t ** exponent``, or its mirror ``1 - (1 - t) ** exponent``.

	Exponents above 1 start slowly; the mirrored form starts quickly instead.
	"""

	if exponent <= 0:
		raise ValueError(f"Curve exponent must be positive, got {exponent}")

	if mirrored:
		return lambda t: 1.0 - (1.0 - t) ** exponent

	return lambda t: t ** exponent


def linear (t: float) -> float:
	return t


def smoothstep (t: float) -> float:

	"""Flat at both ends, symmetric about (0.5, 0.5)."""

	return t * t * (3.0 - 2.0 * t)


EASING_FUNCTIONS: typing.Dict[str, EasingFn] = {
	"linear": linear,
	"ease_in": power_curve(2.0),
	"ease_out": power_curve(2.0, mirrored=True),
	"ease_in_out": smoothstep,
}


def get_easing (shape: typing.Union[str, EasingFn]) -> EasingFn:

	"""Resolve a shape name, or pass a callable through unchanged."""

	if callable(shape):
		return shape

	if shape not in EASING_FUNCTIONS:
		raise ValueError(f"Unknown easing shape {shape!r}. Available: {sorted(EASING_FUNCTIONS)}")

	return EASING_FUNCTIONS[shape]


def map_value (
	value: float,
	in_min: float = 0.0,
	in_max: float = 1.0,
	out_min: float = 0.0,
	out_max: float = 1.0,
	shape: typing.Union[str, EasingFn] = "linear",
	clamp: bool = True
) -> float:

	"""Map a value from an input range to an output range, with optional easing.

	Parameters:
		value: The raw input to scale.
		in_min: The lower bound of the input's expected range.
		in_max: The upper bound of the input's expected range.
		out_min: The lower bound of the mapped output range.
		out_max: The upper bound of the mapped output range.
		shape: The easing curve applied to the normalised ratio.
		clamp: If True (the default), inputs outside the input range are
			clamped so the result never leaves the output range.

	Example:
		```python
		# Global density bias 0.5 onto a 0.15-0.85 density window
		map_value(0.5, out_min=0.15, out_max=0.85)  # → 0.5
		```
	"""

	if in_min == in_max:
		return out_min

	t = (value - in_min) / (in_max - in_min)

	if clamp:
		t = max(0.0, min(1.0, t))

	return out_min + (out_max - out_min) * get_easing(shape)(t)
