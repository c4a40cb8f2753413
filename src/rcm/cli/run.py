from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from rcm.backends.replay import ReplayBackend
from rcm.runtime.config import validate_config
from rcm.utils.io import deep_merge, load_yaml


def load_effective_config(config_path: str) -> Dict[str, Any]:
    cfg_path = Path(config_path).resolve()
    parts = cfg_path.parts
    if "configs" in parts:
        cfg_idx = parts.index("configs")
        root = Path(*parts[:cfg_idx]) if cfg_idx > 0 else Path("/")
    else:
        root = cfg_path.parent
    defaults_path = root / "configs" / "defaults.yaml"

    cfg: Dict[str, Any] = {}
    if defaults_path.exists() and defaults_path != cfg_path:
        cfg = load_yaml(defaults_path)
    cfg = deep_merge(cfg, load_yaml(cfg_path))
    cfg.setdefault("base_dir", str(root))
    return cfg


def run_experiment(config_path: str, overrides: Dict[str, Any] | None = None) -> Dict[str, Any]:
    cfg = load_effective_config(config_path)
    if overrides:
        cfg = deep_merge(cfg, overrides)
    errors = validate_config(cfg)
    if errors:
        raise ValueError("Invalid config: " + "; ".join(errors))
    return ReplayBackend().run(cfg)
