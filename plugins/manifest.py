"""Plugin manifest schema.

Defines the structure of plugins.yaml, the declarative list of extensions
to install and configure at editor startup.
"""

import re
import shlex
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from .declaration import HookEvent


class Schedule(str, Enum):
    """When an entry asks to be loaded."""

    NOW = "now"
    LATER = "later"
    NOW_IF_ARGS = "now_if_args"


class ActionSpec(BaseModel):
    """A hook or configure action.

    Exactly one of:
    - call: Python callable as "module:function" (or "module.function")
    - run: external program and arguments, run synchronously
    """

    call: str | None = Field(None, description="Callable path, e.g. 'myconfig.conform:setup'")
    run: list[str] | None = Field(None, description="Command argv, e.g. ['make']")

    @field_validator("run", mode="before")
    @classmethod
    def split_command(cls, v):
        """Accept a single command string as argv."""
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("call")
    @classmethod
    def validate_call(cls, v: str | None) -> str | None:
        if v is not None and ":" not in v and "." not in v:
            raise ValueError("call must be in format 'module:function'")
        return v

    @model_validator(mode="after")
    def exactly_one(self) -> "ActionSpec":
        if (self.call is None) == (self.run is None):
            raise ValueError("action needs exactly one of 'call' or 'run'")
        if self.run is not None and not self.run:
            raise ValueError("run command must not be empty")
        return self


class PluginSpec(BaseModel):
    """One entry of plugins.yaml."""

    source: str = Field(..., description="Installer source, e.g. 'user/repo'")
    name: str | None = Field(None, description="Extension name (default: last part of source)")
    checkout: str | None = Field(None, description="Branch, tag or commit to check out")
    when: Schedule = Field(Schedule.LATER, description="now, later or now_if_args")
    depends: list[str] = Field(default_factory=list, description="Names or sources of dependencies")
    hooks: dict[HookEvent, ActionSpec] = Field(default_factory=dict, description="Lifecycle hooks")
    configure: ActionSpec | None = Field(None, description="Configuration entry point")
    install: bool = Field(True, description="False for extensions bundled with the editor")

    @field_validator("configure", mode="before")
    @classmethod
    def configure_shorthand(cls, v):
        """Accept 'module:function' as shorthand for {call: ...}."""
        if isinstance(v, str):
            return {"call": v}
        return v

    @field_validator("source", mode="before")
    @classmethod
    def validate_source(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("source must be a non-empty string")
        return v.strip()

    @property
    def resolved_name(self) -> str:
        return self.name or self.source.rstrip("/").rsplit("/", 1)[-1]

    @model_validator(mode="after")
    def validate_name(self) -> "PluginSpec":
        if not re.match(r"^[A-Za-z0-9][A-Za-z0-9._-]*$", self.resolved_name):
            raise ValueError(f"invalid extension name: {self.resolved_name!r}")
        return self


class PluginsManifest(BaseModel):
    """Top-level plugins.yaml schema."""

    plugins: list[PluginSpec] = Field(default_factory=list)
