"""Environment switches for the intake pipeline."""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional

NO_CROP_ENV_VAR = "MEDIA_INTAKE_NO_CROP"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def env_flag_enabled(value: Any, *, default: bool = False) -> bool:
    """
    Interpret an environment value as a switch.

    Unset values are off. Recognised spellings win; anything else yields *default*.
    """
    if value is None:
        return False
    text = value.decode(errors="ignore") if isinstance(value, bytes) else str(value)
    normalized = text.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def crop_disabled_by_env(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Return ``True`` when the interactive crop capability is switched off."""
    source = os.environ if environ is None else environ
    return env_flag_enabled(source.get(NO_CROP_ENV_VAR))


__all__ = ["NO_CROP_ENV_VAR", "crop_disabled_by_env", "env_flag_enabled"]
