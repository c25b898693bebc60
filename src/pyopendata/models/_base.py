"""Base model for open data portal responses.

Every wire model inherits from :class:`OpenDataBaseModel` which
provides:

* A ``model_validator(mode="before")`` that strips portal sentinel
  values (``""``, ``"-"``, ``"null"``, NaN) so the field default is used.
* A ``raw`` dict that captures the original payload.

Field names are snake_case; upstream spellings (camelCase portal keys,
CKAN snake_case keys) are mapped per field through ``AliasChoices``.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Sentinel strings the portal uses for "not available".
_SENTINELS = frozenset({"", "-", "--", "null", "NaN", "nan"})


class OpenDataBaseModel(BaseModel):
    """Base for portal response models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original API response dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        """Strip sentinel values from *values*."""
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_portal_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = OpenDataBaseModel._clean_dict(original)

        # Keep a caller-supplied raw (kwargs construction); otherwise stash the
        # payload being validated.
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
