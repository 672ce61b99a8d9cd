import json
import logging
import os
from typing import Any, Dict, Optional

from fractalgarden.errors import ConfigError
from fractalgarden.palette import PaletteId

DEFAULTS: Dict[str, Any] = {
    "width": 420,
    "height": 420,
    "max_iter": 180,
    "iteration_range": [50, 600],
    "iteration_step": 10,
    "center": [-0.5, 0.0],
    "half_width": 1.35,
    "half_width_range": [5e-4, 4.0],
    "palette": "ocean",
    "workers": 0,
    "band_height": 16,
    "scheduler_workers": 2,
    "cancel_stale": False,
    "log_level": "INFO",
    "log_file": None,
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    if config_path:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                cfg = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config {config_path} is not valid JSON: {e}") from e
        if not isinstance(cfg, dict):
            raise ConfigError("Config JSON must be an object.")
        return cfg
    return dict(DEFAULTS)


def _pair(cfg: Dict[str, Any], key: str, cast) -> list:
    value = cfg.get(key, DEFAULTS[key])
    if not (isinstance(value, (list, tuple)) and len(value) == 2):
        raise ConfigError(f"{key} must be a two-element list.")
    try:
        return [cast(value[0]), cast(value[1])]
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} has non-numeric entries: {value!r}") from e


def normalise_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(DEFAULTS)
    out.update(cfg)

    try:
        width = int(out["width"])
        height = int(out["height"])
        max_iter = int(out["max_iter"])
        half_width = float(out["half_width"])
        workers = int(out["workers"])
        band_height = int(out["band_height"])
        scheduler_workers = int(out["scheduler_workers"])
        iteration_step = int(out["iteration_step"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric config value: {e}") from e

    if width <= 0 or height <= 0:
        raise ConfigError("width/height must be positive.")
    if band_height <= 0 or scheduler_workers <= 0 or workers < 0:
        raise ConfigError("band_height/scheduler_workers must be positive and workers non-negative.")
    if iteration_step <= 0:
        raise ConfigError("iteration_step must be positive.")

    iter_lo, iter_hi = _pair(out, "iteration_range", int)
    if not 10 <= iter_lo <= iter_hi:
        raise ConfigError("iteration_range must satisfy 10 <= lo <= hi.")
    hw_lo, hw_hi = _pair(out, "half_width_range", float)
    if not 0 < hw_lo <= hw_hi:
        raise ConfigError("half_width_range must satisfy 0 < lo <= hi.")
    if half_width <= 0:
        raise ConfigError("half_width must be > 0.")
    center = _pair(out, "center", float)

    level = str(out["log_level"]).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"Unknown log_level: {out['log_level']}")

    out["width"] = width
    out["height"] = height
    out["max_iter"] = max(iter_lo, min(max_iter, iter_hi))
    out["iteration_range"] = [iter_lo, iter_hi]
    out["iteration_step"] = iteration_step
    out["center"] = center
    out["half_width"] = max(hw_lo, min(half_width, hw_hi))
    out["half_width_range"] = [hw_lo, hw_hi]
    out["palette"] = PaletteId.parse(out["palette"]).value
    out["workers"] = workers or (os.cpu_count() or 1)
    out["band_height"] = band_height
    out["scheduler_workers"] = scheduler_workers
    out["cancel_stale"] = bool(out["cancel_stale"])
    out["log_level"] = level
    out["log_file"] = str(out["log_file"]) if out["log_file"] else None
    return out
