"""Field-presence tracking for partial update inputs.

A decoded optional value cannot tell "omitted" apart from "sent as null or
empty": both end up as ``None``/``""``. The translator keeps the raw input
mapping and answers presence questions from it alone.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel


class ChangesetTranslator:
    def __init__(self, input_map: Mapping[str, Any] | None) -> None:
        self.input_map: Mapping[str, Any] = input_map or {}

    @classmethod
    def from_model(cls, model: BaseModel) -> "ChangesetTranslator":
        """Build from the fields the caller explicitly set on a pydantic input."""
        return cls(model.model_dump(exclude_unset=True, by_alias=True))

    def has_field(self, field: str) -> bool:
        return field in self.input_map
