"""Load, validate, and hot-reload the Withings sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  It is
loaded once and cached; ``reload_sync_config()`` re-reads it from disk
without a restart.

Usage::

    from src.withings.config_loader import get_sync_config

    config = get_sync_config()
    config.lookback_days                   # 90
    config.meastypes_param("weights")      # "1"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("weighttrack.withings.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

VARIANTS: tuple[str, ...] = ("weights", "body_composition", "unified")


@dataclass
class VariantConfig:
    """Per-variant fetch settings."""

    name: str
    meastypes: list[int]


@dataclass
class SyncConfig:
    """Validated, in-memory representation of sync_config.yaml.

    Attributes:
        version:          Config schema version string.
        lookback_days:    Default window length when no watermark exists.
        measure_category: getmeas ``category`` (1 = real measurements).
        variants:         Variant name → VariantConfig.
    """

    version: str
    lookback_days: int
    measure_category: int
    variants: dict[str, VariantConfig]
    _raw: dict = field(default_factory=dict, repr=False)

    def variant(self, name: str) -> VariantConfig:
        if name not in self.variants:
            raise KeyError(f"Unknown sync variant '{name}'. Available: {list(self.variants)}")
        return self.variants[name]

    def meastypes_param(self, name: str) -> str:
        """Return the comma-separated ``meastypes`` form value for a variant."""
        return ",".join(str(code) for code in self.variant(name).meastypes)


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    import yaml  # pyyaml

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the parsed YAML and construct a SyncConfig.

    All problems are collected and reported in a single exception.

    Raises:
        ConfigValidationError: If any field is missing or invalid.
    """
    errors: list[str] = []

    def _positive_int(value: Any, name: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{name} must be an integer, got {value!r}")
            return 0
        if number <= 0:
            errors.append(f"{name} must be positive, got {number}")
        return number

    version = str(raw.get("version", "1.0"))
    lookback_days = _positive_int(raw.get("lookback_days", 90), "lookback_days")
    measure_category = _positive_int(raw.get("measure_category", 1), "measure_category")

    variants_raw = raw.get("variants") or {}
    if not isinstance(variants_raw, dict):
        errors.append("'variants' must be a mapping of variant name → settings")
        variants_raw = {}

    variants: dict[str, VariantConfig] = {}
    for name in VARIANTS:
        section = variants_raw.get(name)
        if not isinstance(section, dict):
            errors.append(f"Missing required variant '{name}'")
            continue
        codes = section.get("meastypes")
        if not isinstance(codes, list) or not codes:
            errors.append(f"variants.{name}.meastypes must be a non-empty list")
            continue
        meastypes = [_positive_int(code, f"variants.{name}.meastypes[]") for code in codes]
        variants[name] = VariantConfig(name=name, meastypes=meastypes)

    for name in variants_raw:
        if name not in VARIANTS:
            logger.warning("Ignoring unknown sync variant '%s' in config", name)

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        lookback_days=lookback_days,
        measure_category=measure_category,
        variants=variants,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the cached SyncConfig, loading it on first call.  Thread-safe."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Re-read the sync config and replace the cached instance.

    If validation fails the previous config is retained and the error is
    re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
