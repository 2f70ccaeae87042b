import logging

from pathlib import Path

from omegaconf import DictConfig, OmegaConf

console_logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent / "configurations"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "default.yaml"


def load_default_config() -> DictConfig:
    """Load the packaged default configuration.

    Environment variables referenced through ``${oc.env:...}`` are resolved lazily
    on access, so overrides set after loading still apply.
    """
    return OmegaConf.load(DEFAULT_CONFIG_PATH)


def create_config(**overrides) -> DictConfig:
    """Create a configuration for standalone usage without hydra.

    Keyword arguments are dotted-path overrides merged on top of the defaults.

    Example:
        >>> cfg = create_config(**{"runtime.noise.rate": 0.0})
        >>> cfg.runtime.noise.rate
        0.0
    """
    cfg = load_default_config()
    if not overrides:
        return cfg
    dotlist = [f"{key}={_format_override(value)}" for key, value in overrides.items()]
    return OmegaConf.merge(cfg, OmegaConf.from_dotlist(dotlist))


def _format_override(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_format_override(v) for v in value) + "]"
    return str(value)
