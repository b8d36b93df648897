from __future__ import annotations

"""Pydantic base schema utilities for agent core models."""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all domain schemas.

    Configures common Pydantic behaviors:
    - ``populate_by_name=True``: Allow initialization by alias or field name.
    - ``extra="forbid"``: Prevent unknown fields from slipping into the model, ensuring strict validation.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )


class FrozenSchema(BaseSchema):
    """
    Immutable variant of ``BaseSchema``.

    Used for values shared across concurrent sessions (action specs, plans,
    policy configuration, preflight reports). Assigning to a field raises a
    ``ValidationError``.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )
