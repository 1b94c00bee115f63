"""
Pydantic schemas for event type and event pattern definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.definition import CONTENT_MAX_LENGTH, NAME_MAX_LENGTH


class DefinitionIn(BaseModel):
    name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)
    content: str = Field(min_length=1, max_length=CONTENT_MAX_LENGTH)


class DefinitionOut(BaseModel):
    id: int
    kind: str
    name: str
    content: str
    ready_to_deploy: bool = False
    deployed: bool = False
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OperationOut(BaseModel):
    message: str
    definition: Optional[DefinitionOut] = None
