from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Frozen model that accepts both snake_case and the camelCase wire names."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)
