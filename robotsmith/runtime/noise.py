import logging
import math

import numpy as np

console_logger = logging.getLogger(__name__)


class DisturbanceNoise:
    """Random generalized forces held constant for ``1 / rate`` seconds.

    Samples are standard normals from the Box-Muller transform scaled by ``scale``.
    A non-positive rate or scale disables the noise.
    """

    def __init__(self, rate: float, scale: float, rng: np.random.Generator):
        self._rate = rate
        self._scale = scale
        self.rng = rng
        self._spare: float | None = None
        self._hold_timer = 0.0
        self._forces: np.ndarray | None = None

    @property
    def rate(self) -> float:
        return self._rate

    @rate.setter
    def rate(self, value: float) -> None:
        self._rate = value
        self._hold_timer = 0.0

    @property
    def scale(self) -> float:
        return self._scale

    @scale.setter
    def scale(self, value: float) -> None:
        self._scale = value
        self._hold_timer = 0.0

    @property
    def enabled(self) -> bool:
        return (
            math.isfinite(self._rate)
            and self._rate > 0
            and math.isfinite(self._scale)
            and self._scale > 0
        )

    def reset(self) -> None:
        self._hold_timer = 0.0
        self._forces = None

    def normal(self) -> float:
        """One standard normal sample; samples are generated in pairs."""
        if self._spare is not None:
            value = self._spare
            self._spare = None
            return value
        u = 0.0
        v = 0.0
        while u == 0.0:
            u = self.rng.random()
        while v == 0.0:
            v = self.rng.random()
        magnitude = math.sqrt(-2.0 * math.log(u))
        self._spare = magnitude * math.sin(2.0 * math.pi * v)
        return magnitude * math.cos(2.0 * math.pi * v)

    def apply(self, buffer: np.ndarray, step: float) -> None:
        """Add the held disturbance to ``buffer``, resampling when the hold expires."""
        if len(buffer) == 0 or not math.isfinite(step) or step <= 0 or not self.enabled:
            return
        self._hold_timer -= step
        if self._forces is None or len(self._forces) != len(buffer) or self._hold_timer <= 0:
            self._hold_timer = 1.0 / max(1e-6, self._rate)
            self._forces = np.array([self.normal() * self._scale for _ in range(len(buffer))])
        buffer += self._forces
