"""
Manifest data models.

The manifest document uses camelCase keys (``pathTemplate``,
``serviceReconciliation``); models accept either spelling. All models are
frozen once constructed.

``services`` on a secret is either a flat list of unit names or a mapping of
unit name to policy. It is tagged into ``FlatServiceList`` or
``DetailedServiceMap`` at load time and normalized through ``policies()``.
"""

from __future__ import annotations

import signal as _signal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from secretsmith.config import DEFAULT_UNIT

DEFAULT_MODE = "0600"


class _Model(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


class ServiceActionPolicy(_Model):
    """How one service reacts when a secret it depends on changes."""

    restart: bool = True
    signal: str | None = None
    after: list[str] = Field(default_factory=lambda: [DEFAULT_UNIT])

    @field_validator("signal")
    @classmethod
    def _normalize_signal(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        name = value.strip().upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        if name not in _signal.Signals.__members__:
            raise ValueError(f"unknown signal '{value}'")
        return name

    @property
    def action(self) -> str:
        """The dispatch this policy calls for: signal, restart, or reload."""
        if self.signal:
            return "signal"
        return "restart" if self.restart else "reload"


class FlatServiceList(_Model):
    kind: Literal["flat"] = "flat"
    names: tuple[str, ...] = ()

    def policies(self) -> list[tuple[str, ServiceActionPolicy]]:
        return [(name, ServiceActionPolicy()) for name in self.names]


class DetailedServiceMap(_Model):
    kind: Literal["detailed"] = "detailed"
    policies_by_name: dict[str, ServiceActionPolicy] = Field(default_factory=dict)

    def policies(self) -> list[tuple[str, ServiceActionPolicy]]:
        return list(self.policies_by_name.items())


ServiceSpec = Annotated[FlatServiceList | DetailedServiceMap, Field(discriminator="kind")]


def _tag_services(value: Any) -> Any:
    """Wrap the raw document shape into its tagged form."""
    if value is None or isinstance(value, (FlatServiceList, DetailedServiceMap)):
        return value
    if isinstance(value, (list, tuple)):
        if not all(isinstance(v, str) and v for v in value):
            raise ValueError("services list must contain only non-empty unit names")
        return {"kind": "flat", "names": tuple(value)}
    if isinstance(value, dict):
        policies = {name: (cfg or {}) for name, cfg in value.items()}
        return {"kind": "detailed", "policiesByName": policies}
    raise ValueError(
        "services must be a list of unit names or a mapping of unit name to policy"
    )


class SecretDescriptor(_Model):
    """One declared secret."""

    reference: str
    path: str | None = None
    variables: dict[str, str] = Field(default_factory=dict)
    owner: str | None = None
    group: str | None = None
    mode: str = DEFAULT_MODE
    symlinks: list[str] = Field(default_factory=list)
    template: str | None = None
    services: ServiceSpec | None = None

    @model_validator(mode="before")
    @classmethod
    def _tag(cls, data: Any) -> Any:
        if isinstance(data, dict) and "services" in data:
            data = {**data, "services": _tag_services(data["services"])}
        return data

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_default(cls, value: Any) -> Any:
        if value is None or value == "":
            return DEFAULT_MODE
        if isinstance(value, int):
            raise ValueError("mode must be a quoted octal string such as \"0600\"")
        return value

    def service_policies(self) -> list[tuple[str, ServiceActionPolicy]]:
        """Normalized (unit, policy) pairs, empty when no services are declared."""
        if self.services is None:
            return []
        return self.services.policies()


class ReconciliationPolicy(_Model):
    """Run-wide behaviour of the service reconciler."""

    restart_on_change: bool = True
    continue_on_error: bool = False
    max_retries: int = Field(default=3, ge=0)
    rollback_on_failure: bool = False


class ChangeDetectionPolicy(_Model):
    enable: bool = True
    hash_file: str | None = None
    save_incrementally: bool = False


class MaterializationPolicy(_Model):
    continue_on_error: bool = False


class Manifest(_Model):
    """One deployment run's secrets plus global templating and policy."""

    secrets: list[SecretDescriptor] = Field(default_factory=list)
    path_template: str | None = None
    defaults: dict[str, str] = Field(default_factory=dict)
    service_reconciliation: ReconciliationPolicy = Field(default_factory=ReconciliationPolicy)
    change_detection: ChangeDetectionPolicy = Field(default_factory=ChangeDetectionPolicy)
    materialization: MaterializationPolicy = Field(default_factory=MaterializationPolicy)
