"""Process identity attached to every resiliency measurement."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RuntimeIdentity(BaseModel):
    """
    Application identity of the hosting runtime.
    Set once when metrics are initialized and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    app_id: str = Field(description="Application identifier (app_id tag)")
    namespace: str = Field(default="", description="Namespace the application runs in")

    def to_resource_attributes(self) -> dict:
        """Return a dict of resource attributes for OTLP export."""
        attrs = {}
        if self.app_id:
            attrs["service.name"] = self.app_id
        if self.namespace:
            attrs["service.namespace"] = self.namespace
        return attrs
