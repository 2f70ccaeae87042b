"""
Command line entry point: compile a URDF and its meshes into a self-contained MJCF
directory, optionally loading and stepping it in MuJoCo as a smoke check.

Example:
    python main.py cli.urdf_path=robot/robot.urdf cli.mesh_dir=robot
"""

import logging
import os
import time

from datetime import timedelta
from pathlib import Path

import hydra
import numpy as np

from omegaconf import DictConfig, OmegaConf

from robotsmith.compiler.model_source import ModelSourceRequest, build_model_source
from robotsmith.runtime.engine_adapter import MujocoEngineAdapter
from robotsmith.utils.logging import FileLoggingContext

console_logger = logging.getLogger(__name__)


def collect_assets(urdf_path: Path, mesh_dir: Path | None) -> tuple[str, dict[str, bytes]]:
    """Bundle the URDF and every file under ``mesh_dir`` keyed by relative path.

    Returns:
        The URDF's bundle key and the bundle.
    """
    root = mesh_dir if mesh_dir is not None else urdf_path.parent
    assets = {}
    for path in sorted(root.rglob("*")):
        if path.is_file():
            assets[path.relative_to(root).as_posix()] = path.read_bytes()
    try:
        urdf_key = urdf_path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        urdf_key = urdf_path.name
    assets[urdf_key] = urdf_path.read_bytes()
    return urdf_key, assets


def write_model(output_dir: Path, filename: str, content: str, files: dict[str, bytes]) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    model_path = output_dir / Path(filename).name
    model_path.write_text(content)
    for key, data in files.items():
        target = output_dir / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    console_logger.info(f"Wrote {model_path} and {len(files)} mesh files")
    return model_path


def smoke_test(content: str, files: dict[str, bytes], seconds: float) -> None:
    """Load the compiled model in MuJoCo and step it for ``seconds`` of sim time."""
    engine = MujocoEngineAdapter()
    engine.load(content, files)
    steps = int(seconds / engine.timestep) if engine.timestep > 0 else 0
    for _ in range(steps):
        engine.step()
    finite = bool(np.all(np.isfinite(engine.float_view("qpos"))))
    console_logger.info(
        f"Smoke test: {steps} steps over {seconds:g}s, nbody={engine.nbody}, "
        f"nu={engine.nu}, finite state={finite}"
    )
    engine.close()
    if not finite:
        raise RuntimeError("Simulation diverged during the smoke test")


def run_local(cfg: DictConfig):
    start_time = time.time()
    OmegaConf.resolve(cfg)

    if cfg.cli.urdf_path is None:
        raise ValueError("Must specify the URDF with command line argument 'cli.urdf_path=...'")
    urdf_path = Path(cfg.cli.urdf_path)
    mesh_dir = Path(cfg.cli.mesh_dir) if cfg.cli.mesh_dir else None
    output_dir = Path(cfg.cli.output_dir)

    log_path = output_dir / "compile.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    with FileLoggingContext(log_file_path=log_path, suppress_stdout=False):
        console_logger.info(f"Outputs will be saved to: {output_dir}")
        console_logger.info("Resolved configuration:\n" + OmegaConf.to_yaml(cfg))

        urdf_key, assets = collect_assets(urdf_path, mesh_dir)
        result = build_model_source(
            ModelSourceRequest(
                assets=assets, urdf_key=urdf_key, name_prefix=cfg.cli.name_prefix or ""
            ),
            cfg,
        )
        source = result.source
        for message in result.warnings:
            console_logger.info(f"Compile warning: {message}")
        if source.content is None:
            raise ValueError(f"No robot description found at {urdf_path}")

        write_model(output_dir, source.filename, source.content, source.files)

        if cfg.cli.smoke_test_seconds and cfg.cli.smoke_test_seconds > 0:
            smoke_test(source.content, source.files, float(cfg.cli.smoke_test_seconds))

        console_logger.info(
            f"Compilation completed in {timedelta(seconds=time.time() - start_time)}"
        )


@hydra.main(version_base=None, config_path="robotsmith/configurations", config_name="default")
def run(cfg: DictConfig):
    # Configure logging level from LOGLEVEL environment variable.
    log_level = os.environ.get("LOGLEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_local(cfg)


if __name__ == "__main__":
    run()
