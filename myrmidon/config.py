"""Swarm agent configuration.

Loads a YAML document, merges it over built-in defaults and validates it
before the agent starts, so a typo fails fast with a readable message
instead of a KeyError deep inside the control loop.

Example ``config/swarm.yaml``::

    swarm:
      members: [ajax, aeneas, achilles, diomedes, hector, paris]
      proximity_threshold: 2.0
    control:
      tick_period_s: 0.1
      status_period_s: 5.0
      kp: 0.5
      cruise_speed: 0.05
      linear_scale: 1.3
      angular_scale: 8.0
      autonomous_modes: [2, 3]
    watchdog:
      enabled: true
      timeout_s: 10.0
    channels:
      type: mqtt
      broker_host: localhost
"""

from __future__ import annotations

import copy
import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from myrmidon.swarm.membership import DEFAULT_MEMBERS

logger = logging.getLogger("Myrmidon.Config")

DEFAULT_CONFIG: Dict[str, Any] = {
    "swarm": {
        "members": list(DEFAULT_MEMBERS),
        "proximity_threshold": 2.0,
    },
    "control": {
        "tick_period_s": 0.1,
        "status_period_s": 5.0,
        "kp": 0.5,
        "cruise_speed": 0.05,
        "linear_scale": 1.3,
        "angular_scale": 8.0,
        "autonomous_modes": [2, 3],
    },
    "watchdog": {
        "enabled": True,
        "timeout_s": 10.0,
    },
    "channels": {
        "type": "memory",
    },
}

_DEFAULT_CONFIG_PATH = Path("config") / "swarm.yaml"


class ConfigError(ValueError):
    """The configuration is invalid.  ``errors`` lists every problem found."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass(frozen=True)
class ControlConfig:
    tick_period_s: float = 0.1
    status_period_s: float = 5.0
    kp: float = 0.5
    cruise_speed: float = 0.05
    linear_scale: float = 1.3
    angular_scale: float = 8.0
    autonomous_modes: Tuple[int, ...] = (2, 3)


@dataclass(frozen=True)
class WatchdogConfig:
    enabled: bool = True
    timeout_s: float = 10.0


@dataclass(frozen=True)
class SwarmConfig:
    """Fully resolved agent configuration."""

    members: Tuple[str, ...] = DEFAULT_MEMBERS
    proximity_threshold: float = 2.0
    control: ControlConfig = field(default_factory=ControlConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    channels: Dict[str, Any] = field(default_factory=lambda: {"type": "memory"})

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]] = None) -> SwarmConfig:
        """Merge *raw* over the defaults, validate, and build a SwarmConfig.

        Raises:
            ConfigError: listing every validation error.
        """
        merged = merge_defaults(raw or {})
        ok, errors = validate_swarm_config(merged)
        if not ok:
            raise ConfigError(errors)

        swarm = merged["swarm"]
        ctl = merged["control"]
        wd = merged["watchdog"]
        return cls(
            members=tuple(swarm["members"]),
            proximity_threshold=float(swarm["proximity_threshold"]),
            control=ControlConfig(
                tick_period_s=float(ctl["tick_period_s"]),
                status_period_s=float(ctl["status_period_s"]),
                kp=float(ctl["kp"]),
                cruise_speed=float(ctl["cruise_speed"]),
                linear_scale=float(ctl["linear_scale"]),
                angular_scale=float(ctl["angular_scale"]),
                autonomous_modes=tuple(int(m) for m in ctl["autonomous_modes"]),
            ),
            watchdog=WatchdogConfig(
                enabled=bool(wd["enabled"]),
                timeout_s=float(wd["timeout_s"]),
            ),
            channels=dict(merged["channels"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swarm": {
                "members": list(self.members),
                "proximity_threshold": self.proximity_threshold,
            },
            "control": {
                "tick_period_s": self.control.tick_period_s,
                "status_period_s": self.control.status_period_s,
                "kp": self.control.kp,
                "cruise_speed": self.control.cruise_speed,
                "linear_scale": self.control.linear_scale,
                "angular_scale": self.control.angular_scale,
                "autonomous_modes": list(self.control.autonomous_modes),
            },
            "watchdog": {
                "enabled": self.watchdog.enabled,
                "timeout_s": self.watchdog.timeout_s,
            },
            "channels": dict(self.channels),
        }


def merge_defaults(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new dict with each section of *raw* layered over the defaults.

    Non-dict sections are kept as-is so that validation can report them.
    """
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for section, value in raw.items():
        if isinstance(value, dict) and isinstance(merged.get(section), dict):
            merged[section].update(value)
        else:
            merged[section] = value
    return merged


def _is_positive_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_swarm_config(config: dict) -> Tuple[bool, List[str]]:
    """Validate a merged config dict.

    Returns:
        A ``(is_valid, errors)`` tuple.  ``is_valid`` is ``True`` only when
        ``errors`` is empty.
    """
    if not isinstance(config, dict):
        return False, ["Config must be a dict (check YAML syntax)"]

    errors: List[str] = []

    for section in ("swarm", "control", "watchdog", "channels"):
        if not isinstance(config.get(section), dict):
            errors.append(f"'{section}' must be a mapping (dict)")
    if errors:
        return False, errors

    # ── swarm ─────────────────────────────────────────────────────────────────
    swarm = config["swarm"]
    members = swarm.get("members")
    if not isinstance(members, list) or not members:
        errors.append("'swarm.members' must be a non-empty list of names")
    else:
        seen = set()
        for name in members:
            if not isinstance(name, str) or not name.strip():
                errors.append(f"'swarm.members' entry is not a name: {name!r}")
            elif "," in name or name != name.strip():
                errors.append(f"'swarm.members' entry {name!r} has a comma or padding")
            elif name in seen:
                errors.append(f"'swarm.members' lists {name!r} twice")
            seen.add(name)
    if not _is_positive_number(swarm.get("proximity_threshold")):
        errors.append("'swarm.proximity_threshold' must be a positive number")

    # ── control ───────────────────────────────────────────────────────────────
    ctl = config["control"]
    for key in ("tick_period_s", "status_period_s"):
        if not _is_positive_number(ctl.get(key)):
            errors.append(f"'control.{key}' must be a positive number")
    for key in ("kp", "cruise_speed", "linear_scale", "angular_scale"):
        if not _is_finite_number(ctl.get(key)):
            errors.append(f"'control.{key}' must be a finite number")
    modes = ctl.get("autonomous_modes")
    if not isinstance(modes, list) or not all(
        isinstance(m, int) and not isinstance(m, bool) for m in modes
    ):
        errors.append("'control.autonomous_modes' must be a list of integers")

    # ── watchdog ──────────────────────────────────────────────────────────────
    wd = config["watchdog"]
    if not isinstance(wd.get("enabled"), bool):
        errors.append("'watchdog.enabled' must be true or false")
    if not _is_positive_number(wd.get("timeout_s")):
        errors.append("'watchdog.timeout_s' must be a positive number")

    # ── channels ──────────────────────────────────────────────────────────────
    ch_type = config["channels"].get("type")
    if ch_type not in ("memory", "mqtt"):
        errors.append(f"'channels.type' must be 'memory' or 'mqtt', not {ch_type!r}")

    return len(errors) == 0, errors


def log_validation_result(config: dict, label: str = "swarm config") -> bool:
    """Validate *config* (merged over defaults) and log each error."""
    ok, errors = validate_swarm_config(merge_defaults(config))
    if ok:
        logger.debug("%s validation passed", label)
    else:
        for msg in errors:
            logger.error("%s validation error: %s", label, msg)
    return ok


def find_config_path(config_path: Optional[str] = None) -> Path:
    """Explicit path, else ``$MYRMIDON_CONFIG``, else ``config/swarm.yaml``."""
    if config_path:
        return Path(config_path)
    env_cfg = os.getenv("MYRMIDON_CONFIG")
    if env_cfg:
        return Path(env_cfg)
    return _DEFAULT_CONFIG_PATH


def load_config(config_path: Optional[str] = None) -> SwarmConfig:
    """Load and validate the YAML config.

    A missing file yields the defaults (logged at WARNING).

    Raises:
        ConfigError: the file is not valid YAML or fails validation.
    """
    path = find_config_path(config_path)
    if not path.exists():
        logger.warning("Config not found at %s, using defaults", path)
        return SwarmConfig.from_dict({})

    try:
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError([f"{path}: {exc}"]) from exc
    if not isinstance(data, dict):
        raise ConfigError([f"{path}: top level must be a mapping"])

    logger.debug("Loaded config from %s", path)
    return SwarmConfig.from_dict(data)
