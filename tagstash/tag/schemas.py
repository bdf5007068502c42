from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from tagstash.common.schemas import CamelModel, OrmModel


class TagCreateInput(CamelModel):
    name: str = Field(..., min_length=1, max_length=128)
    # URL, data URI or bare base64
    image: Optional[str] = None


class TagUpdateInput(CamelModel):
    id: str
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    # null or "" clears the stored image; omitting the key leaves it alone
    image: Optional[str] = None


class TagDestroyInput(CamelModel):
    id: str


class TagsDestroyInput(CamelModel):
    ids: List[str]


class TagResponse(OrmModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime
