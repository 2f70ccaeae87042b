from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from omegaconf import DictConfig

from robotsmith.config import load_default_config
from robotsmith.runtime.engine_adapter import EngineAdapter, MujocoEngineAdapter


@dataclass
class RuntimeContext:
    """Session-wide runtime state shared by every physics bridge.

    Created once by the caller and passed to each bridge instead of relying on
    module-level singletons.
    """

    config: DictConfig = field(default_factory=load_default_config)
    engine_factory: Callable[[], EngineAdapter] = MujocoEngineAdapter
    """Creates a fresh engine adapter for each load."""
    rng: np.random.Generator = field(default_factory=np.random.default_rng)
    """Source of disturbance noise samples."""

    @classmethod
    def create(cls, config: DictConfig | None = None, seed: int | None = None) -> "RuntimeContext":
        return cls(
            config=config if config is not None else load_default_config(),
            rng=np.random.default_rng(seed),
        )
