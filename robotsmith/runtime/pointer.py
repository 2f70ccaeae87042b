"""Pointer interaction: spring-damper dragging of bodies and a kinematic cursor."""

import logging
import math

from dataclasses import dataclass
from enum import Enum

import numpy as np

from omegaconf import DictConfig

from robotsmith.utils.mjcf_utils import quaternion_to_rotation

console_logger = logging.getLogger(__name__)

# Used when the configured spring parameters are not usable.
FALLBACK_STIFFNESS = 600.0
FALLBACK_MAX_FORCE = 1000.0

MIN_GRAB_MASS = 1e-6


class PointerMode(Enum):
    NONE = "none"
    GRAB = "grab"
    """A dynamic body is pulled towards the pointer by a spring."""
    CURSOR = "cursor"
    """A mocap marker follows the pointer without applying force."""


@dataclass
class PointerSpringConfig:
    stiffness: float = 200.0
    """Spring stiffness in N/m."""
    max_force: float = 160.0
    """Force magnitude clamp in N."""
    damping_ratio: float = 1.0
    park_y: float = -1000.0

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "PointerSpringConfig":
        return cls(
            stiffness=max(1.0, float(cfg.stiffness)),
            max_force=max(1.0, float(cfg.max_force)),
            damping_ratio=float(cfg.damping_ratio),
            park_y=float(cfg.park_y),
        )


@dataclass
class PointerSpringDebugState:
    """Last spring evaluation, for on-screen diagnostics."""

    anchor: np.ndarray
    target: np.ndarray
    force: np.ndarray
    force_magnitude: float
    distance: float
    stiffness: float
    max_force: float


def _finite_point(point) -> bool:
    return point is not None and len(point) == 3 and all(math.isfinite(float(v)) for v in point)


class PointerController:
    """Pointer state of one loaded model.

    All engine access goes through the adapter passed at construction.
    ``cursor_mocap_id`` is the mocap index of the cursor body, or -1 when the model
    has none.
    """

    def __init__(self, engine, config: PointerSpringConfig, cursor_mocap_id: int = -1):
        self.engine = engine
        self.config = config
        self.cursor_mocap_id = cursor_mocap_id
        self.mode = PointerMode.NONE
        self.target: np.ndarray | None = None
        self.body_id = -1
        self.local_point: np.ndarray | None = None
        self.debug_state: PointerSpringDebugState | None = None
        self._previous_valid = False
        self._previous_anchor = np.zeros(3)
        self._previous_target = np.zeros(3)

    def set_force_config(self, stiffness: float | None = None, max_force: float | None = None) -> None:
        if stiffness is not None and math.isfinite(stiffness):
            self.config.stiffness = max(1.0, float(stiffness))
        if max_force is not None and math.isfinite(max_force):
            self.config.max_force = max(1.0, float(max_force))

    def _body_pose(self, body_id: int):
        xpos = self.engine.float_view("xpos")
        xquat = self.engine.float_view("xquat")
        if body_id * 3 + 2 >= len(xpos) or body_id * 4 + 3 >= len(xquat):
            return None
        position = np.array(xpos[body_id * 3 : body_id * 3 + 3])
        rotation = quaternion_to_rotation(xquat[body_id * 4 : body_id * 4 + 4])
        return position, rotation

    def _body_mass(self, body_id: int) -> float:
        masses = self.engine.float_view("body_mass")
        if body_id >= len(masses):
            return 0.0
        return float(masses[body_id])

    def set_cursor_position(self, point) -> None:
        if self.cursor_mocap_id < 0:
            return
        mocap_pos = self.engine.float_view("mocap_pos")
        mocap_quat = self.engine.float_view("mocap_quat")
        base = self.cursor_mocap_id * 3
        if base + 2 < len(mocap_pos):
            mocap_pos[base : base + 3] = point
        base = self.cursor_mocap_id * 4
        if base + 3 < len(mocap_quat):
            mocap_quat[base : base + 4] = (1.0, 0.0, 0.0, 0.0)

    def park_cursor(self) -> None:
        self.set_cursor_position((0.0, self.config.park_y, 0.0))

    def _clear_spring(self) -> None:
        self.debug_state = None
        self._previous_valid = False

    def begin(self, body_id: int | None, world_point) -> PointerMode:
        """Start an interaction at ``world_point`` on ``body_id`` (None for empty space).

        Bodies with mass are grabbed; otherwise the cursor is used when the model
        has one.
        """
        if not self.engine.loaded or not _finite_point(world_point):
            return PointerMode.NONE
        self.target = np.asarray(world_point, dtype=float).copy()
        self.body_id = -1
        self.local_point = None
        self.mode = PointerMode.NONE
        self._clear_spring()

        if body_id is not None and 0 < body_id < self.engine.nbody:
            pose = self._body_pose(body_id)
            mass = self._body_mass(body_id)
            if pose is not None and math.isfinite(mass) and mass > MIN_GRAB_MASS:
                position, rotation = pose
                self.body_id = body_id
                self.local_point = rotation.inv().apply(self.target - position)
                self.mode = PointerMode.GRAB
                self.park_cursor()
                console_logger.debug(f"Pointer grab on body {body_id}")
                return self.mode

        if self.cursor_mocap_id >= 0:
            self.mode = PointerMode.CURSOR
            self.set_cursor_position(self.target)
            return self.mode

        self.target = None
        return PointerMode.NONE

    def update(self, world_point) -> None:
        """Move the pointer target; None clears it until the next update."""
        if world_point is None:
            self.target = None
            self._clear_spring()
            if self.mode == PointerMode.CURSOR:
                self.park_cursor()
            return
        if not _finite_point(world_point):
            return
        self.target = np.asarray(world_point, dtype=float).copy()
        if self.mode == PointerMode.CURSOR:
            self.set_cursor_position(self.target)

    def end(self) -> None:
        self.mode = PointerMode.NONE
        self.target = None
        self.body_id = -1
        self.local_point = None
        applied = self.engine.float_view("qfrc_applied")
        if len(applied):
            applied[:] = 0.0
        self._clear_spring()
        self.park_cursor()

    def apply(self, step: float) -> None:
        """Per sub-step pointer effect: cursor placement or the drag force."""
        self.debug_state = None
        if self.mode == PointerMode.CURSOR:
            if self.target is not None:
                self.set_cursor_position(self.target)
            else:
                self.park_cursor()
            return
        self.park_cursor()
        if self.mode == PointerMode.GRAB:
            self._apply_drag_force(step)

    def _apply_drag_force(self, step: float) -> None:
        if self.target is None or self.local_point is None:
            return
        body_id = self.body_id
        if body_id <= 0 or body_id >= self.engine.nbody:
            return
        mass = self._body_mass(body_id)
        if mass <= MIN_GRAB_MASS:
            return
        pose = self._body_pose(body_id)
        if pose is None:
            return
        position, rotation = pose
        anchor = rotation.apply(self.local_point) + position

        stiffness = self.config.stiffness
        if not math.isfinite(stiffness) or stiffness <= 0:
            stiffness = FALLBACK_STIFFNESS
        max_force = self.config.max_force
        if not math.isfinite(max_force) or max_force <= 0:
            max_force = FALLBACK_MAX_FORCE

        force = stiffness * (self.target - anchor)
        if self._previous_valid and math.isfinite(step) and step > 0:
            relative_velocity = (anchor - self._previous_anchor) / step - (
                self.target - self._previous_target
            ) / step
            # Critical damping for the body mass at the configured ratio.
            damping = 2.0 * self.config.damping_ratio * math.sqrt(max(0.0, stiffness) * mass)
            force = force - damping * relative_velocity

        self._previous_anchor = anchor
        self._previous_target = self.target.copy()
        self._previous_valid = True

        magnitude = float(np.linalg.norm(force))
        if magnitude <= 1e-8:
            return
        if magnitude > max_force:
            force = force * (max_force / magnitude)

        self.engine.apply_force(force, np.zeros(3), anchor, body_id)
        self.debug_state = PointerSpringDebugState(
            anchor=anchor,
            target=self.target.copy(),
            force=force,
            force_magnitude=float(np.linalg.norm(force)),
            distance=float(np.linalg.norm(self.target - anchor)),
            stiffness=stiffness,
            max_force=max_force,
        )
