"""
Emitter custom resource models.

Mirrors the webapp.hello.operator.com/v1 Emitter schema. Only the fields the
operator reads are modelled; unknown fields are ignored.
"""

from typing import Any, Dict, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEPLOYMENT_PREFIX = "emitter-"


class ObjectKey(NamedTuple):
    """Namespace/name identity of a cluster object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def paired_deployment_name(pair_name: str) -> str:
    """Derive the paired deployment name from an Emitter's pairName."""
    return f"{DEPLOYMENT_PREFIX}{pair_name}"


class EmitterSpec(BaseModel):
    """Desired state of an Emitter."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Reserved: parsed and displayed, never consulted when reconciling.
    create_pair: bool = Field(default=False, alias="createPair")
    pair_name: str = Field(default="", alias="pairName")

    @field_validator("create_pair", mode="before")
    @classmethod
    def default_create_pair(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("pair_name", mode="before")
    @classmethod
    def default_pair_name(cls, v: Any) -> Any:
        return "" if v is None else v


class EmitterStatus(BaseModel):
    """Observed state of an Emitter (intentionally empty)."""

    model_config = ConfigDict(extra="ignore")


class Emitter(BaseModel):
    """An Emitter custom resource."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_version: str = Field(default="webapp.hello.operator.com/v1", alias="apiVersion")
    kind: str = "Emitter"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: EmitterSpec = Field(default_factory=EmitterSpec)
    status: EmitterStatus = Field(default_factory=EmitterStatus)

    @field_validator("spec", "status", mode="before")
    @classmethod
    def default_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "Emitter":
        """Build an Emitter from a raw custom object dict."""
        return cls.model_validate(resource)

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def deployment_name(self) -> str:
        return paired_deployment_name(self.spec.pair_name)
