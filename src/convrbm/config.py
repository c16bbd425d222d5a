"""Loading of Python config files.

A config file is a plain Python module defining a ``CONFIG`` dict::

    CONFIG = {
        "model": {"visible_unit": "binary", "hidden_unit": "relu",
                  "nc": 1, "nv1": 28, "nv2": 28, "k": 40, "nh1": 24, "nh2": 24},
        "device": "auto",
        "seed": 42,
    }
"""

from __future__ import annotations

import copy
import importlib.util
from pathlib import Path
from typing import Any, Dict, Union

from .errors import ConfigurationError

DEFAULT_CONFIG: Dict[str, Any] = {
    "model": {
        "visible_unit": "binary",
        "hidden_unit": "binary",
        "batch_size": 25,
        "serial": False,
        "nan_checks": True,
    },
    "device": "auto",
    "seed": 42,
    "workers": None,
    "gibbs": {
        "steps": 10,
        "batch_size": 8,
    },
}


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Execute the config file at ``path`` and return its CONFIG over the defaults."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    spec = importlib.util.spec_from_file_location(f"_convrbm_config_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load config file: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    cfg = getattr(module, "CONFIG", None)
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"{path} must define a CONFIG dict")

    return merge_config(DEFAULT_CONFIG, cfg)
