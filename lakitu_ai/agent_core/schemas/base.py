"""Pydantic base schema utilities for agent core models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all domain schemas.

    Configures common Pydantic behaviors:
    - ``populate_by_name=True``: Allow initialization by alias or field name.
    - ``extra="forbid"``: Reject unknown fields so rows and payloads cannot smuggle data in.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )
