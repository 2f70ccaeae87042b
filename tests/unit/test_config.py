"""Unit tests for configuration loading."""

import os
import unittest

from unittest.mock import patch

from robotsmith.compiler.mjcf_compiler import CollisionMode, CompileOptions
from robotsmith.config import create_config, load_default_config


class TestConfig(unittest.TestCase):
    """Tests for the packaged defaults and overrides."""

    def test_defaults(self):
        """The defaults carry the runtime and compiler constants."""
        cfg = load_default_config()
        self.assertEqual(list(cfg.runtime.gravity), [0.0, -9.81, 0.0])
        self.assertEqual(cfg.runtime.max_substeps, 8)
        self.assertEqual(cfg.reload.debounce_seconds, 0.25)
        self.assertEqual(cfg.compiler.timestep, 0.002)

    def test_overrides(self):
        """Dotted overrides replace values, including nulls and lists."""
        cfg = create_config(
            **{
                "runtime.noise.rate": 0.0,
                "runtime.self_collide": True,
                "cli.urdf_path": None,
                "runtime.gravity": [0, 0, -9.81],
            }
        )
        self.assertEqual(cfg.runtime.noise.rate, 0.0)
        self.assertTrue(cfg.runtime.self_collide)
        self.assertIsNone(cfg.cli.urdf_path)
        self.assertEqual(list(cfg.runtime.gravity), [0, 0, -9.81])

    def test_collision_mode_from_environment(self):
        """The collision mode honours the environment override."""
        with patch.dict(os.environ, {"ROBOTSMITH_COLLISION_MODE": "box"}):
            cfg = load_default_config()
            self.assertEqual(cfg.model_source.collision_mode, "box")
            self.assertEqual(CollisionMode.parse(cfg.model_source.collision_mode), CollisionMode.BOX)
        with patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(load_default_config().model_source.collision_mode)

    def test_compile_options_from_config(self):
        """Compile options pick up compiler section values."""
        options = CompileOptions.from_config(create_config(**{"compiler.timestep": 0.004}))
        self.assertEqual(options.timestep, 0.004)


if __name__ == "__main__":
    unittest.main()
