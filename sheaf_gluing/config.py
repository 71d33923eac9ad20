"""
GluingConfig: build-time switches for the gluing engine.

Redlines:
- No silent downgrade: an invalid environment value raises, it is never
  replaced by the default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Tuple

from .categories import Flavor

ENV_FLAVOR = "SHEAF_GLUING_FLAVOR"
ENV_VALIDATE = "SHEAF_GLUING_VALIDATE"
ENV_CACHE = "SHEAF_GLUING_CACHE"

_TRUE = ("1", "TRUE", "YES", "ON")
_FALSE = ("0", "FALSE", "NO", "OFF")


def _env_strict_enum(name: str, *, allowed: Tuple[str, ...], default: str) -> str:
    """
    Read an env var as an enum-like string with strict validation.
    """
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return str(default)
    val = str(raw).strip().upper()
    if val not in allowed:
        raise ValueError(f"{name} must be one of {list(allowed)}, got {raw!r}")
    return val


def _env_bool(name: str, *, default: bool) -> bool:
    val = _env_strict_enum(name, allowed=_TRUE + _FALSE, default="1" if default else "0")
    return val in _TRUE


@dataclass(frozen=True)
class GluingConfig:
    """
    flavor:             which structured-space flavor to build
    validate_on_build:  run GlueData.validate() over the finite index set first
    cache_sections:     memoise SectionInverter results per (chart, open)
    verify_obligations: re-check both inverse laws after every inversion
    """
    flavor: Flavor = Flavor.PRESHEAFED
    validate_on_build: bool = True
    cache_sections: bool = True
    verify_obligations: bool = True

    def __post_init__(self):
        if not isinstance(self.flavor, Flavor):
            raise TypeError(f"flavor must be a Flavor, got {type(self.flavor).__name__}")

    def with_flavor(self, flavor: Flavor) -> "GluingConfig":
        return replace(self, flavor=flavor)

    @classmethod
    def from_env(cls) -> "GluingConfig":
        flavor = _env_strict_enum(
            ENV_FLAVOR, allowed=tuple(f.name for f in Flavor), default=Flavor.PRESHEAFED.name
        )
        return cls(
            flavor=Flavor[flavor],
            validate_on_build=_env_bool(ENV_VALIDATE, default=True),
            cache_sections=_env_bool(ENV_CACHE, default=True),
        )
