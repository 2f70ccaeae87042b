"""Loads compiled models into the engine and drives them in real time.

One ``PhysicsBridge`` owns one engine model at a time. Loading compiles (or takes)
the model document, builds a fresh engine instance and binds engine bodies to scene
nodes; the previous model is only replaced once the new one loaded successfully.
Stepping runs a fixed-timestep accumulator and pushes body poses back onto the
bound scene nodes.
"""

import logging
import math

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from robotsmith.compiler.mjcf_compiler import (
    BodyRecord,
    compile_scene,
    scene_compile_options,
)
from robotsmith.compiler.model_merge import (
    POINTER_CURSOR_BODY,
    append_pointer_cursor,
    splice_extra_bodies,
)
from robotsmith.compiler.model_source import ModelSource, SourceKind
from robotsmith.model.scene_graph import EditorKind, SceneGraph, SceneNode
from robotsmith.runtime.actuators import ActuatorConfig, ActuatorController
from robotsmith.runtime.context import RuntimeContext
from robotsmith.runtime.engine_adapter import EngineAdapter, ObjectKind
from robotsmith.runtime.noise import DisturbanceNoise
from robotsmith.runtime.pointer import (
    PointerController,
    PointerMode,
    PointerSpringConfig,
    PointerSpringDebugState,
)
from robotsmith.utils.mjcf_utils import compose_transform, invert_transform
from robotsmith.utils.naming import NameMap, sanitize_name

console_logger = logging.getLogger(__name__)

# Collision bits of editor bodies merged into imported robot models.
EXTRA_BODY_COLLISION_MASK = (2, 3)
EXTRA_BODY_SELF_COLLIDE_MASK = (1, 1)


class BridgeState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    STEPPING = "stepping"
    IDLE = "idle"
    DISPOSED = "disposed"


@dataclass
class BodyBinding:
    """An engine body driving a scene node."""

    body_id: int
    node: SceneNode
    body_to_object: np.ndarray = field(default_factory=lambda: np.eye(4))
    """Node world transform expressed in the engine body frame, captured at load."""


class _LoadedModel:
    """Everything that belongs to one successfully loaded engine model."""

    def __init__(self, engine: EngineAdapter, name_map: NameMap | None):
        self.engine = engine
        self.name_map = name_map
        self.bindings: list[BodyBinding] = []
        self.body_id_by_object_id: dict[str, int] = {}
        self.actuator_names: list[str] = []
        self.actuator_by_name: dict[str, int] = {}
        self._joint_ids: dict[str, int] = {}
        self._actuator_ids: dict[str, int] = {}
        for index in range(engine.nu):
            name = engine.id_to_name(ObjectKind.ACTUATOR, index)
            if name:
                self.actuator_names.append(name)
                self.actuator_by_name[name] = index

    def _mapped_joint(self, raw: str) -> str | None:
        if self.name_map is None:
            return None
        return self.name_map.joints.get(raw)

    def resolve_joint_id(self, raw: str) -> int:
        if raw in self._joint_ids:
            return self._joint_ids[raw]
        mapped = self._mapped_joint(raw) or raw
        joint_id = self.engine.name_to_id(ObjectKind.JOINT, mapped)
        if joint_id < 0 and mapped != raw:
            joint_id = self.engine.name_to_id(ObjectKind.JOINT, raw)
        self._joint_ids[raw] = joint_id
        return joint_id

    def resolve_actuator_id(self, raw: str) -> int:
        if raw in self._actuator_ids:
            return self._actuator_ids[raw]
        candidates = [raw, f"{raw}_motor"]
        mapped = self._mapped_joint(raw)
        if mapped:
            candidates.extend([f"{mapped}_motor", mapped])
        actuator_id = -1
        for candidate in candidates:
            if candidate in self.actuator_by_name:
                actuator_id = self.actuator_by_name[candidate]
                break
        self._actuator_ids[raw] = actuator_id
        return actuator_id


def _body_world_matrix(engine: EngineAdapter, body_id: int) -> np.ndarray | None:
    xpos = engine.float_view("xpos")
    xquat = engine.float_view("xquat")
    if body_id * 3 + 2 >= len(xpos) or body_id * 4 + 3 >= len(xquat):
        return None
    return compose_transform(xpos[body_id * 3 : body_id * 3 + 3], xquat[body_id * 4 : body_id * 4 + 4])


def _node_lookup(nodes) -> dict[str, SceneNode]:
    """Nodes keyed by name and by id; the first claim of a key wins."""
    lookup: dict[str, SceneNode] = {}
    for node in nodes:
        if node.name:
            lookup.setdefault(node.name, node)
        lookup.setdefault(node.node_id, node)
    return lookup


class PhysicsBridge:
    """Real-time driver of one engine model bound to a scene graph.

    State machine: ``UNLOADED -> LOADING -> READY -> (STEPPING <-> IDLE) -> DISPOSED``.
    A failed load returns to the previous state when a model was active and to
    ``UNLOADED`` otherwise.
    """

    def __init__(self, context: RuntimeContext):
        self.context = context
        runtime_cfg = context.config.runtime
        self.max_substeps = int(runtime_cfg.max_substeps)
        self.gravity = [float(g) for g in runtime_cfg.gravity]
        self.self_collide = bool(runtime_cfg.self_collide)
        self.noise = DisturbanceNoise(
            float(runtime_cfg.noise.rate), float(runtime_cfg.noise.scale), context.rng
        )
        self.pointer_config = PointerSpringConfig.from_config(runtime_cfg.pointer)
        self.state = BridgeState.UNLOADED
        self._model: _LoadedModel | None = None
        self._actuators: ActuatorController | None = None
        self._pointer: PointerController | None = None
        self._accumulator = 0.0
        self._last_xml: str | None = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    @property
    def engine(self) -> EngineAdapter | None:
        return self._model.engine if self._model is not None else None

    @property
    def name_map(self) -> NameMap | None:
        return self._model.name_map if self._model is not None else None

    @property
    def bindings(self) -> list[BodyBinding]:
        return list(self._model.bindings) if self._model is not None else []

    def body_id_for_object(self, object_id: str) -> int | None:
        if self._model is None:
            return None
        return self._model.body_id_by_object_id.get(object_id)

    def _build_document(
        self, graph: SceneGraph, roots: list[SceneNode], source: ModelSource | None
    ) -> tuple[str, dict[str, bytes], list[BodyRecord], NameMap | None, bool]:
        cfg = self.context.config
        options = scene_compile_options(cfg)
        if source is None or source.kind == SourceKind.GENERATED:
            compiled = compile_scene(graph, roots, options)
            return compiled.xml, {}, compiled.bodies, compiled.name_map, True

        xml = source.content or ""
        extra_roots = [root for root in roots if not graph.is_imported(root)]
        records: list[BodyRecord] = []
        if extra_roots:
            mask = EXTRA_BODY_SELF_COLLIDE_MASK if self.self_collide else EXTRA_BODY_COLLISION_MASK
            extra = compile_scene(graph, extra_roots, options, collision_mask=mask)
            xml = splice_extra_bodies(xml, extra)
            records = extra.bodies
            console_logger.debug(
                f"Merged {len(extra_roots)} editor roots ({len(records)} bodies)"
            )
        return xml, dict(source.files), records, source.name_map, False

    def load_from_scene(
        self,
        graph: SceneGraph,
        roots: list[SceneNode] | None = None,
        source: ModelSource | None = None,
    ) -> None:
        """Build and load the engine model for ``roots`` and bind it to the scene.

        Args:
            graph: The scene graph to simulate.
            roots: Root nodes to include; defaults to all roots.
            source: Model source of imported robots; None or a generated source
                compiles the authored scene.

        Raises:
            EngineLoadError: If the engine rejects the document.

        Any failure while loading or binding closes the new engine and leaves the
        previously loaded model, if any, active.
        """
        if self.state == BridgeState.DISPOSED:
            raise RuntimeError("Physics bridge has been disposed")
        roots = list(graph.roots if roots is None else roots)
        previous_state = self.state
        self.state = BridgeState.LOADING

        try:
            xml, assets, records, name_map, generated = self._build_document(graph, roots, source)
            xml = append_pointer_cursor(xml, self.context.config)
            self._last_xml = xml
            engine = self.context.engine_factory()
        except Exception:
            self.state = previous_state if self._model is not None else BridgeState.UNLOADED
            raise
        try:
            engine.load(xml, assets)
            engine.set_gravity(self.gravity)
            engine.forward()

            model = _LoadedModel(engine, name_map)
            self._bind(model, graph, roots, records, generated)
            self._capture_offsets(model)
            self._index_objects(model)

            cursor_body = engine.name_to_id(ObjectKind.BODY, POINTER_CURSOR_BODY)
            mocap_ids = engine.int_view("body_mocapid")
            cursor_mocap_id = (
                int(mocap_ids[cursor_body]) if 0 <= cursor_body < len(mocap_ids) else -1
            )
        except Exception:
            # The new engine is discarded; the active model, if any, is untouched.
            engine.close()
            self.state = previous_state if self._model is not None else BridgeState.UNLOADED
            raise

        self._release_model()
        self._model = model
        self._actuators = ActuatorController(
            engine,
            model.resolve_joint_id,
            model.resolve_actuator_id,
            self.context.config.runtime.actuator,
        )
        self._pointer = PointerController(engine, self.pointer_config, cursor_mocap_id)
        self._pointer.park_cursor()
        self._accumulator = 0.0
        self.noise.reset()
        self._sync_bindings()
        self.state = BridgeState.READY
        console_logger.info(
            f"Loaded physics model: {engine.nbody} bodies, {len(model.bindings)} bindings, "
            f"{len(model.actuator_names)} actuators"
        )

    def _bind(
        self,
        model: _LoadedModel,
        graph: SceneGraph,
        roots: list[SceneNode],
        records: list[BodyRecord],
        generated: bool,
    ) -> None:
        engine = model.engine
        nodes_by_id = {node.node_id: node for node in graph.nodes(roots)}
        bound: set[int] = set()

        for record in records:
            body_id = engine.name_to_id(ObjectKind.BODY, record.name)
            node = nodes_by_id.get(record.source_id)
            if body_id >= 0 and node is not None:
                model.bindings.append(BodyBinding(body_id=body_id, node=node))
                bound.add(body_id)
        if generated:
            return

        link_by_engine = model.name_map.link_name_by_engine() if model.name_map else {}
        root_maps = {}
        for root in roots:
            if graph.is_imported(root):
                links = [node for node in root.traverse() if node.kind == EditorKind.LINK]
                root_maps[sanitize_name(root.node_id)] = _node_lookup(links)
        global_map = _node_lookup(graph.nodes(roots))

        for body_id in range(1, engine.nbody):
            if body_id in bound:
                continue
            name = engine.id_to_name(ObjectKind.BODY, body_id)
            if not name or name == POINTER_CURSOR_BODY:
                continue
            lookup = link_by_engine.get(name, name)
            node = None
            for prefix, links in root_maps.items():
                if name.startswith(f"{prefix}_"):
                    node = links.get(lookup)
                    break
            if node is None:
                node = global_map.get(lookup)
            if node is None:
                continue
            model.bindings.append(BodyBinding(body_id=body_id, node=node))
            bound.add(body_id)

    def _capture_offsets(self, model: _LoadedModel) -> None:
        for binding in model.bindings:
            body_world = _body_world_matrix(model.engine, binding.body_id)
            if body_world is None:
                binding.body_to_object = np.eye(4)
                continue
            binding.body_to_object = invert_transform(body_world) @ binding.node.world_matrix()

    def _index_objects(self, model: _LoadedModel) -> None:
        """Map every node under a bound node to that binding's body."""
        bound_nodes = {id(binding.node) for binding in model.bindings}
        for binding in model.bindings:
            stack = [binding.node]
            while stack:
                node = stack.pop()
                if node is not binding.node and id(node) in bound_nodes:
                    continue
                model.body_id_by_object_id[node.node_id] = binding.body_id
                stack.extend(node.children)

    def _sync_bindings(self) -> None:
        model = self._model
        if model is None:
            return
        for binding in model.bindings:
            body_world = _body_world_matrix(model.engine, binding.body_id)
            if body_world is None:
                continue
            world = body_world @ binding.body_to_object
            parent = binding.node.parent
            if parent is not None:
                world = invert_transform(parent.world_matrix()) @ world
            binding.node.set_local_matrix(world)

    def step(self, dt: float) -> int:
        """Advance the simulation by wall-clock ``dt`` seconds.

        Returns:
            The number of engine sub-steps taken, at most ``max_substeps``.
        """
        model = self._model
        if model is None or not dt or not math.isfinite(dt) or dt <= 0:
            return 0
        engine = model.engine
        self.state = BridgeState.STEPPING
        step = engine.timestep or 0.01
        self._accumulator += dt
        steps = 0
        while self._accumulator >= step and steps < self.max_substeps:
            applied = engine.float_view("qfrc_applied")
            if len(applied):
                applied[:] = 0.0
            self.noise.apply(applied, step)
            self._pointer.apply(step)
            if self._actuators.armed:
                self._actuators.advance_blend(step)
                self._actuators.apply()
            engine.step()
            self._accumulator -= step
            steps += 1
        if steps == self.max_substeps and self._accumulator >= step:
            # Drop the backlog a slow frame left behind.
            self._accumulator = math.fmod(self._accumulator, step)
        if steps:
            self._sync_bindings()
        self.state = BridgeState.IDLE
        return steps

    def set_noise_rate(self, value: float) -> None:
        self.noise.rate = value

    def set_noise_scale(self, value: float) -> None:
        self.noise.scale = value

    def get_actuator_names(self) -> list[str]:
        return list(self._model.actuator_names) if self._model is not None else []

    def set_actuator_controls(self, controls) -> None:
        """Write raw control values, as a flat sequence or keyed by actuator/joint name."""
        if self._model is None:
            return
        ctrl = self._model.engine.float_view("ctrl")
        if len(ctrl) == 0:
            return
        if isinstance(controls, dict):
            for raw, value in controls.items():
                if value is None or not math.isfinite(value):
                    continue
                actuator_id = self._model.resolve_actuator_id(raw)
                if 0 <= actuator_id < len(ctrl):
                    ctrl[actuator_id] = value
            return
        values = np.asarray(controls, dtype=float).reshape(-1)
        count = min(len(ctrl), len(values))
        finite = np.isfinite(values[:count])
        ctrl[:count][finite] = values[:count][finite]

    def set_actuator_targets(self, targets: dict[str, float]) -> None:
        if self._actuators is not None:
            self._actuators.set_targets(targets)

    def set_actuator_velocity_targets(self, targets: dict[str, float]) -> None:
        if self._actuators is not None:
            self._actuators.set_velocity_targets(targets)

    def set_actuator_torque_targets(self, targets: dict[str, float]) -> None:
        if self._actuators is not None:
            self._actuators.set_torque_targets(targets)

    def set_actuator_configs(self, configs: dict[str, ActuatorConfig]) -> None:
        if self._actuators is not None:
            self._actuators.set_configs(configs)

    def set_actuators_armed(self, armed: bool) -> None:
        if self._actuators is not None:
            self._actuators.set_armed(armed)

    @property
    def actuators_armed(self) -> bool:
        return self._actuators is not None and self._actuators.armed

    @property
    def actuator_arm_blend(self) -> float:
        return self._actuators.blend if self._actuators is not None else 0.0

    def get_joint_positions(self, names: list[str] | None = None) -> dict[str, float]:
        """Joint positions in engine units, for ``names`` or every targeted joint."""
        if self._model is None:
            return {}
        engine = self._model.engine
        qpos = engine.float_view("qpos")
        addresses = engine.int_view("jnt_qposadr")
        keys = names if names else list(self._actuators.position_targets)
        result = {}
        for name in keys:
            joint_id = self._model.resolve_joint_id(name)
            if joint_id < 0 or joint_id >= len(addresses):
                continue
            address = int(addresses[joint_id])
            if address < len(qpos):
                result[name] = float(qpos[address])
        return result

    def set_joint_positions(self, positions: dict[str, float]) -> None:
        """Jump joints to ``positions`` (engine units) and resync the scene."""
        if self._model is None:
            return
        engine = self._model.engine
        qpos = engine.float_view("qpos")
        qvel = engine.float_view("qvel")
        qpos_addresses = engine.int_view("jnt_qposadr")
        dof_addresses = engine.int_view("jnt_dofadr")
        changed = False
        for name, value in positions.items():
            if value is None or not math.isfinite(value):
                continue
            joint_id = self._model.resolve_joint_id(name)
            if joint_id < 0 or joint_id >= len(qpos_addresses):
                continue
            address = int(qpos_addresses[joint_id])
            if address >= len(qpos):
                continue
            qpos[address] = value
            dof = int(dof_addresses[joint_id])
            if dof < len(qvel):
                qvel[dof] = 0.0
            changed = True
        if changed:
            engine.forward()
            self._sync_bindings()

    def set_pointer_force_config(
        self, stiffness: float | None = None, max_force: float | None = None
    ) -> None:
        if self._pointer is not None:
            self._pointer.set_force_config(stiffness, max_force)
        else:
            if stiffness is not None and math.isfinite(stiffness):
                self.pointer_config.stiffness = max(1.0, float(stiffness))
            if max_force is not None and math.isfinite(max_force):
                self.pointer_config.max_force = max(1.0, float(max_force))

    def begin_pointer_interaction(self, object_id: str | None, world_point) -> PointerMode:
        if self._pointer is None:
            return PointerMode.NONE
        body_id = self.body_id_for_object(object_id) if object_id else None
        return self._pointer.begin(body_id, world_point)

    def update_pointer_target(self, world_point) -> None:
        if self._pointer is not None:
            self._pointer.update(world_point)

    def end_pointer_interaction(self) -> None:
        if self._pointer is not None:
            self._pointer.end()

    def get_pointer_spring_debug_state(self) -> PointerSpringDebugState | None:
        if self._pointer is None or self._pointer.debug_state is None:
            return None
        state = self._pointer.debug_state
        return PointerSpringDebugState(
            anchor=state.anchor.copy(),
            target=state.target.copy(),
            force=state.force.copy(),
            force_magnitude=state.force_magnitude,
            distance=state.distance,
            stiffness=state.stiffness,
            max_force=state.max_force,
        )

    def get_last_xml(self) -> str | None:
        return self._last_xml

    def _release_model(self) -> None:
        if self._model is not None:
            self._model.engine.close()
        self._model = None
        self._actuators = None
        self._pointer = None
        self._accumulator = 0.0
        self.noise.reset()

    def dispose(self) -> None:
        """Release the engine model and every binding."""
        self._release_model()
        self.state = BridgeState.DISPOSED
        console_logger.debug("Physics bridge disposed")
