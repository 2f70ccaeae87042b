"""Typed access to the native physics engine.

The bridge only talks to the engine through ``EngineAdapter``: flat numeric views
of model/data buffers, name lookups and the handful of native calls it needs.
``MujocoEngineAdapter`` implements it on top of the ``mujoco`` Python bindings.
"""

import logging

from abc import ABC, abstractmethod
from enum import Enum

import mujoco
import numpy as np

console_logger = logging.getLogger(__name__)


class EngineLoadError(RuntimeError):
    """Raised when the engine cannot build a model from a compiled document."""


class ObjectKind(Enum):
    BODY = "body"
    JOINT = "joint"
    ACTUATOR = "actuator"


class EngineAdapter(ABC):
    """One loaded engine model and its mutable state."""

    @abstractmethod
    def load(self, xml: str, assets: dict[str, bytes] | None = None) -> None:
        """Build model and state from an MJCF document.

        Raises:
            EngineLoadError: With the engine's diagnostic text.
        """

    @property
    @abstractmethod
    def loaded(self) -> bool: ...

    @abstractmethod
    def float_view(self, name: str) -> np.ndarray:
        """Flat float64 view of a state or model buffer; writes reach the engine."""

    @abstractmethod
    def int_view(self, name: str) -> np.ndarray:
        """Flat int32 view of a model buffer."""

    @abstractmethod
    def name_to_id(self, kind: ObjectKind, name: str) -> int:
        """Index of a named object, or -1."""

    @abstractmethod
    def id_to_name(self, kind: ObjectKind, index: int) -> str | None: ...

    @abstractmethod
    def forward(self) -> None: ...

    @abstractmethod
    def step(self) -> None: ...

    @abstractmethod
    def apply_force(self, force, torque, point, body_id: int) -> None:
        """Add a world-frame force/torque at ``point`` to the applied generalized forces."""

    @property
    @abstractmethod
    def timestep(self) -> float: ...

    @property
    @abstractmethod
    def nbody(self) -> int: ...

    @property
    @abstractmethod
    def nu(self) -> int: ...

    @abstractmethod
    def set_gravity(self, gravity) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


_OBJECT_TYPES = {
    ObjectKind.BODY: mujoco.mjtObj.mjOBJ_BODY,
    ObjectKind.JOINT: mujoco.mjtObj.mjOBJ_JOINT,
    ObjectKind.ACTUATOR: mujoco.mjtObj.mjOBJ_ACTUATOR,
}

_EMPTY_FLOAT = np.zeros(0, dtype=np.float64)
_EMPTY_INT = np.zeros(0, dtype=np.int32)


class MujocoEngineAdapter(EngineAdapter):
    def __init__(self):
        self.model: mujoco.MjModel | None = None
        self.data: mujoco.MjData | None = None

    def load(self, xml: str, assets: dict[str, bytes] | None = None) -> None:
        try:
            model = mujoco.MjModel.from_xml_string(xml, assets or {})
        except ValueError as e:
            raise EngineLoadError(str(e)) from e
        data = mujoco.MjData(model)
        self.model = model
        self.data = data
        console_logger.debug(
            f"Loaded MuJoCo model: nbody={model.nbody} njnt={model.njnt} "
            f"ngeom={model.ngeom} nu={model.nu}"
        )

    @property
    def loaded(self) -> bool:
        return self.model is not None and self.data is not None

    def _buffer(self, name: str):
        if not self.loaded:
            return None
        if hasattr(self.data, name):
            return getattr(self.data, name)
        return getattr(self.model, name, None)

    def float_view(self, name: str) -> np.ndarray:
        buffer = self._buffer(name)
        if buffer is None:
            return _EMPTY_FLOAT
        return buffer.reshape(-1)

    def int_view(self, name: str) -> np.ndarray:
        buffer = self._buffer(name)
        if buffer is None:
            return _EMPTY_INT
        return buffer.reshape(-1)

    def name_to_id(self, kind: ObjectKind, name: str) -> int:
        if not self.loaded or not name:
            return -1
        return mujoco.mj_name2id(self.model, _OBJECT_TYPES[kind], name)

    def id_to_name(self, kind: ObjectKind, index: int) -> str | None:
        if not self.loaded:
            return None
        return mujoco.mj_id2name(self.model, _OBJECT_TYPES[kind], index)

    def forward(self) -> None:
        mujoco.mj_forward(self.model, self.data)

    def step(self) -> None:
        mujoco.mj_step(self.model, self.data)

    def apply_force(self, force, torque, point, body_id: int) -> None:
        mujoco.mj_applyFT(
            self.model,
            self.data,
            np.asarray(force, dtype=np.float64),
            np.asarray(torque, dtype=np.float64),
            np.asarray(point, dtype=np.float64),
            body_id,
            self.data.qfrc_applied,
        )

    @property
    def timestep(self) -> float:
        return float(self.model.opt.timestep) if self.loaded else 0.0

    @property
    def nbody(self) -> int:
        return int(self.model.nbody) if self.loaded else 0

    @property
    def nu(self) -> int:
        return int(self.model.nu) if self.loaded else 0

    def set_gravity(self, gravity) -> None:
        self.model.opt.gravity[:] = np.asarray(gravity, dtype=np.float64)

    def close(self) -> None:
        self.data = None
        self.model = None
