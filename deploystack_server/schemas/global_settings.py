from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class GlobalSettingOut(BaseModel):
    key: str
    value: str
    description: Optional[str] = None
    is_encrypted: bool = False
    group_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GlobalSettingGroupOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    sort_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    settings: List[GlobalSettingOut] = Field(default_factory=list)


class GlobalSettingWrite(BaseModel):
    value: str = Field(..., description="Plain text value; encrypted at rest when 'encrypted' is set")
    description: Optional[str] = None
    encrypted: bool = False
    group_id: Optional[str] = None


class SettingsValidationOut(BaseModel):
    valid: bool
    missing: List[str] = Field(default_factory=list)
