from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from deploystack_server.db.config_store import BackendKind


class DbSetupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    backend_kind: BackendKind = Field(..., alias='backendKind', description="Storage backend to provision")
    connection_path: Optional[str] = Field(
        default=None,
        alias='connectionPath',
        min_length=1,
        description="Database file path, relative to the data directory unless absolute",
    )


class DbSetupResponse(BaseModel):
    success: bool
    message: str
    setup_required: bool = False
    already_configured: bool = False


class DbStatusResponse(BaseModel):
    configured: bool
    initialized: bool
    dialect: Optional[str] = None
