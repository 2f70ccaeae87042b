"""Serialized model reloads for one scene.

Only one compile-and-load runs at a time. Reload requests arriving while a load is
in flight queue behind it; requests arriving in quick succession are debounced into
a single reload.
"""

import asyncio
import logging

from typing import Awaitable, Callable, Generic, TypeVar

from robotsmith.compiler.model_merge import merge_model_fragments
from robotsmith.compiler.model_source import (
    ModelSource,
    ModelSourceRequest,
    SourceKind,
    build_model_source,
)
from robotsmith.model.scene_graph import SceneGraph, SceneNode, link_friction_overrides
from robotsmith.runtime.actuators import (
    ActuatorRegistry,
    build_actuator_registry,
    map_pose_by_robot,
)
from robotsmith.runtime.physics_bridge import PhysicsBridge
from robotsmith.utils.naming import NameMap, sanitize_name

console_logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReloadScheduler(Generic[T]):
    """Runs an async reload function one call at a time with optional debounce.

    ``run()`` waits for any reload in flight and then runs a fresh one.
    ``schedule()`` arms a timer; further calls before it fires restart the timer and
    share the same future, so a burst of requests yields one reload.
    """

    def __init__(self, reload_fn: Callable[[], Awaitable[T]], debounce_seconds: float = 0.25):
        self.reload_fn = reload_fn
        self.debounce_seconds = debounce_seconds
        self._lock = asyncio.Lock()
        self._timer: asyncio.TimerHandle | None = None
        self._pending: asyncio.Future | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(self) -> T:
        async with self._lock:
            return await self.reload_fn()

    def schedule(self) -> asyncio.Future:
        """Request a debounced reload; must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        if self._pending is None or self._pending.done():
            self._pending = loop.create_future()
        self._timer = loop.call_later(self.debounce_seconds, self._fire)
        return self._pending

    def _fire(self) -> None:
        future = self._pending
        self._timer = None
        self._pending = None
        task = asyncio.ensure_future(self.run())
        task.add_done_callback(lambda done: _forward_result(done, future))


def _forward_result(task: asyncio.Future, future: asyncio.Future | None) -> None:
    if future is None or future.done():
        return
    if task.cancelled():
        future.cancel()
    elif task.exception() is not None:
        future.set_exception(task.exception())
    else:
        future.set_result(task.result())


class PhysicsSession:
    """Keeps a physics bridge in sync with a scene graph.

    Imported robots are built into model sources off the event loop and merged into
    one document before the bridge loads it. Authored roots are compiled by the
    bridge itself.
    """

    def __init__(
        self,
        bridge: PhysicsBridge,
        graph: SceneGraph,
        asset_bundles: dict[str, dict[str, bytes]] | None = None,
    ):
        """
        Args:
            bridge: The bridge that owns the engine model.
            graph: The scene graph to simulate.
            asset_bundles: Bundled robot files keyed by imported root node id.
        """
        self.bridge = bridge
        self.graph = graph
        self.cfg = bridge.context.config
        self.asset_bundles = dict(asset_bundles or {})
        self.last_warnings: list[str] = []
        self.registry = ActuatorRegistry()
        self.scheduler: ReloadScheduler[list[str]] = ReloadScheduler(
            self._reload, float(self.cfg.reload.debounce_seconds)
        )

    def set_assets(self, root_id: str, assets: dict[str, bytes]) -> None:
        self.asset_bundles[root_id] = dict(assets)

    def _request_for(self, root: SceneNode) -> ModelSourceRequest:
        imported = self.graph.imported[root.node_id]
        return ModelSourceRequest(
            assets=self.asset_bundles.get(root.node_id, {}),
            urdf_key=imported.urdf_key,
            urdf_source=imported.urdf_source,
            name_prefix=sanitize_name(root.node_id),
            floating_base=imported.floating_base,
            first_link_is_world_reference=imported.first_link_is_world_reference,
            self_collision=imported.self_collision,
            collision_mode=imported.collision_mode,
            root_transform=root.world_pose(),
            geom_friction_by_body=link_friction_overrides(self.graph, [root]),
        )

    async def _build_sources(self) -> tuple[dict[str, ModelSource], list[str]]:
        sources = {}
        warnings = []
        for root in self.graph.imported_roots():
            result = await asyncio.to_thread(build_model_source, self._request_for(root), self.cfg)
            warnings.extend(result.warnings)
            if result.source.kind != SourceKind.GENERATED:
                sources[root.node_id] = result.source
        return sources, warnings

    async def _reload(self) -> list[str]:
        sources, warnings = await self._build_sources()
        merged = merge_model_fragments(
            [source.to_compiled_model() for source in sources.values()], self.cfg
        )
        source = None
        if merged is not None:
            source = ModelSource(
                kind=SourceKind.MJCF,
                filename=merged.filename,
                content=merged.xml,
                files=merged.assets,
                name_map=merged.name_map,
            )
            warnings.extend(merged.warnings)

        self.bridge.load_from_scene(self.graph, self.graph.roots, source)
        self.bridge.set_actuators_armed(False)
        self._apply_registry(sources)
        self.last_warnings = warnings
        console_logger.info(
            f"Reloaded physics: {len(sources)} imported sources, {len(warnings)} warnings"
        )
        return warnings

    def _apply_registry(self, sources: dict[str, ModelSource]) -> None:
        scene_map = self.bridge.name_map or NameMap()
        name_maps = {root.node_id: scene_map for root in self.graph.roots}
        name_maps.update({root_id: source.name_map for root_id, source in sources.items()})
        self.registry = build_actuator_registry(self.graph, name_maps, self.cfg)
        resolver = self.registry.resolver()
        self.bridge.set_actuator_configs(
            map_pose_by_robot(self.registry.configs_by_robot, resolver)
        )
        self.bridge.set_actuator_targets(
            map_pose_by_robot(self.registry.initial_targets_by_robot, resolver)
        )

    async def reload(self) -> list[str]:
        """Rebuild and load the model now, after any reload already in flight.

        Returns:
            The warnings collected while building the model.
        """
        return await self.scheduler.run()

    def schedule_reload(self) -> asyncio.Future:
        """Debounced reload; bursts of calls share one reload and one future."""
        return self.scheduler.schedule()
