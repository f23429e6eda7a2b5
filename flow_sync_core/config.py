"""
Configuration for the synchronization core.

Every setting resolves explicit value → ``FLOW_SYNC_*`` environment variable →
hard-coded default. The resulting ``SyncConfig`` is passed to the objects that
need it; nothing reads the environment after construction.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Optional

from .exceptions import ValidationError

ENV_PREFIX = "FLOW_SYNC_"

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


def resolve_setting(value: Any, env_var: str, default: Any) -> Any:
    """Three-tier resolution: explicit → env → default."""
    # 1. Explicit value (constructor argument or caller override)
    if value is not None:
        return value
    # 2. Environment variable
    env_val = os.environ.get(env_var, '').strip()
    if env_val:
        return env_val
    # 3. Hard-coded default
    return default


def _to_bool(text: Any) -> bool:
    if isinstance(text, bool):
        return text
    lowered = str(text).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {text!r}")


_CONVERTERS: Dict[type, Callable[[Any], Any]] = {
    int: int,
    float: float,
    bool: _to_bool,
    str: str,
}


@dataclass
class SyncConfig:
    """Settings for parsing, generation, layout and the external collaborators."""
    layout_direction: str = "TB"
    node_width: float = 180.0
    node_height: float = 60.0
    rank_spacing: float = 80.0
    node_spacing: float = 40.0
    child_padding: float = 20.0
    indent_size: int = 2
    reclassify_generated_names: bool = True
    store_url: Optional[str] = None
    store_timeout: float = 10.0
    sqlite_path: Optional[str] = None
    tsc_path: Optional[str] = None
    tsc_timeout: float = 30.0

    def __post_init__(self):
        self.layout_direction = self.layout_direction.upper()
        if self.layout_direction not in ("TB", "LR"):
            raise ValidationError(
                f"Unsupported layout direction: {self.layout_direction}",
                {'layout_direction': self.layout_direction},
            )
        if self.indent_size < 0:
            raise ValidationError("indent_size must not be negative", {'indent_size': self.indent_size})

    @classmethod
    def from_env(cls, **overrides: Any) -> 'SyncConfig':
        """Build a config from explicit overrides, the environment and the defaults."""
        unknown = set(overrides) - {f.name for f in fields(cls)}
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        defaults = cls()
        for f in fields(cls):
            env_var = ENV_PREFIX + f.name.upper()
            default = getattr(defaults, f.name)
            raw = resolve_setting(overrides.get(f.name), env_var, default)
            values[f.name] = cls._convert(f.name, raw, default)
        return cls(**values)

    @staticmethod
    def _convert(name: str, raw: Any, default: Any) -> Any:
        if raw is None or default is None or not isinstance(raw, str):
            return raw
        converter = _CONVERTERS.get(type(default), str)
        try:
            return converter(raw)
        except ValueError as e:
            raise ValidationError(f"Invalid value for {name}: {raw!r}", {'setting': name}) from e
