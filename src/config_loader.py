"""Configuration loader that parses and validates user-provided TOML."""

from __future__ import annotations

import tomllib
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any, Dict

from .datatypes import (
    AppConfig,
    CollectionConfig,
    CropConfig,
    EngineConfig,
    NormalizeConfig,
    VideoConfig,
)

_SECTIONS = {
    "collection": CollectionConfig,
    "crop": CropConfig,
    "normalize": NormalizeConfig,
    "video": VideoConfig,
    "engine": EngineConfig,
}


class ConfigError(ValueError):
    """Raised when the configuration file is malformed or fails validation."""


def _coerce_bool(value: Any, dotted_key: str) -> bool:
    """Return a bool, coercing simple 0/1 representations when necessary."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"0", "1"}:
            return normalized == "1"
        if normalized in {"true", "false"}:
            return normalized == "true"
    raise ConfigError(f"{dotted_key} must be a boolean (use true/false).")


def _sanitize_section(raw: dict[str, Any], name: str, cls):
    """
    Coerce a raw TOML table into an instance of ``cls`` with cleaned booleans.

    Parameters:
        raw (dict[str, Any]): Raw TOML section data.
        name (str): Section name used when reporting validation errors.
        cls: Dataclass type used to construct the section object.

    Returns:
        Any: Instantiated dataclass populated with values from ``raw``.

    Raises:
        ConfigError: If the section is not a table or contains invalid keys or values.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table")
    cleaned: Dict[str, Any] = {}
    cls_fields = {field.name: field for field in fields(cls)}
    bool_fields = {
        field_name for field_name, field in cls_fields.items() if field.type in (bool, "bool")
    }
    nested_fields = {
        field_name: field.type
        for field_name, field in cls_fields.items()
        if is_dataclass(field.type)
    }
    for key, value in raw.items():
        if key in bool_fields:
            cleaned[key] = _coerce_bool(value, f"{name}.{key}")
        elif key in nested_fields:
            if not isinstance(value, dict):
                raise ConfigError(f"[{name}.{key}] must be a table")
            cleaned[key] = _sanitize_section(value, f"{name}.{key}", nested_fields[key])
        else:
            cleaned[key] = value
    try:
        return cls(**cleaned)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in [{name}]: {exc}") from exc


def _validate(app: AppConfig) -> None:
    """Apply range checks and light normalisation to a populated config."""

    if not isinstance(app.collection.max_size, int) or app.collection.max_size < 1:
        raise ConfigError("collection.max_size must be an integer >= 1")

    crop = app.crop
    if crop.aspect_ratio <= 0:
        raise ConfigError("crop.aspect_ratio must be > 0")
    if not 0 < crop.default_area_fraction <= 1:
        raise ConfigError("crop.default_area_fraction must be in (0, 1]")
    if crop.output_size < 1:
        raise ConfigError("crop.output_size must be >= 1")
    if crop.size_ceiling_bytes < 1:
        raise ConfigError("crop.size_ceiling_bytes must be >= 1")

    if app.normalize.max_width < 1:
        raise ConfigError("normalize.max_width must be >= 1")
    if not 0 < app.normalize.quality <= 1:
        raise ConfigError("normalize.quality must be in (0, 1]")

    video = app.video
    extensions = []
    for ext in video.force_transcode_extensions:
        if not isinstance(ext, str) or not ext.strip().startswith("."):
            raise ConfigError("video.force_transcode_extensions entries must start with '.'")
        extensions.append(ext.strip().lower())
    video.force_transcode_extensions = extensions
    if video.probe_timeout_seconds <= 0:
        raise ConfigError("video.probe_timeout_seconds must be > 0")
    if video.large_warning_bytes < 1:
        raise ConfigError("video.large_warning_bytes must be >= 1")
    if video.likely_too_large_bytes < 1:
        raise ConfigError("video.likely_too_large_bytes must be >= 1")
    if video.black_check_after_seconds < 0:
        raise ConfigError("video.black_check_after_seconds must be >= 0")
    if video.black_sample_grid < 1:
        raise ConfigError("video.black_sample_grid must be >= 1")
    if not 0 <= video.black_threshold <= 255:
        raise ConfigError("video.black_threshold must be between 0 and 255")
    if video.kickstart_seconds < 0:
        raise ConfigError("video.kickstart_seconds must be >= 0")

    engine = app.engine
    if engine.download and not engine.download_url.strip():
        raise ConfigError("engine.download_url must be set when engine.download is enabled")
    if engine.load_timeout_seconds <= 0:
        raise ConfigError("engine.load_timeout_seconds must be > 0")
    if engine.transcode_timeout_seconds < 0:
        raise ConfigError("engine.transcode_timeout_seconds must be >= 0")
    if not 0 <= engine.crf <= 51:
        raise ConfigError("engine.crf must be between 0 and 51")


def load_config(path: str | Path | None) -> AppConfig:
    """
    Load and validate an application configuration from a TOML file.

    Reads the file at `path` as UTF-8 TOML (a BOM is accepted), coerces every known
    section into its dataclass and validates ranges. ``None`` yields the defaults.

    Raises:
        ConfigError: If the file is not UTF-8, TOML parsing fails, a section contains
            unknown keys, or any validation rule is violated.
    """

    if path is None:
        app = AppConfig()
        _validate(app)
        return app

    with open(path, "rb") as handle:
        raw_bytes = handle.read()
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        raw_bytes = raw_bytes[3:]
    try:
        raw = tomllib.loads(raw_bytes.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError("Configuration file must be UTF-8 encoded") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse TOML: {exc}") from exc

    unknown = sorted(set(raw) - set(_SECTIONS))
    if unknown:
        raise ConfigError(f"Unknown configuration sections: {', '.join(unknown)}")

    app = AppConfig(
        **{name: _sanitize_section(raw.get(name, {}), name, cls) for name, cls in _SECTIONS.items()}
    )
    _validate(app)
    return app


__all__ = ["ConfigError", "load_config"]
