from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class PluginOut(BaseModel):
    id: str
    name: str
    version: str
    description: str = ''
    author: Optional[str] = None
    enabled: bool
    initialized: bool
    has_database_extension: bool
    route_namespace: Optional[str] = None
    path: Optional[str] = None
    error: Optional[str] = None
