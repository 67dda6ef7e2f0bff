"""Process-level configuration, read once from the environment before any run."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

SAFETY_ASSURED_ENV = "SAFETY_ASSURED"
SCHEMA_LOAD_ENV = "ZDGUARD_SCHEMA_LOAD"

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class GuardConfig:
    """Switches shared by every migration run in this process.

    safety_assured: skip every check (schema reloads, CI bypass).
    schema_load: the schema is being loaded whole rather than migrated step by step.
    fail_fast: stop at the first blocked operation. Turn off only for dry runs.
    """

    safety_assured: bool = False
    schema_load: bool = False
    fail_fast: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "GuardConfig":
        env = os.environ if environ is None else environ
        values = {
            "safety_assured": env_flag(env.get(SAFETY_ASSURED_ENV)),
            "schema_load": env_flag(env.get(SCHEMA_LOAD_ENV)),
        }
        values.update(overrides)
        return cls(**values)
