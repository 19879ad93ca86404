"""
Wire models for the remote sync endpoints (camelCase JSON).

POST /sync/upload  : UploadRequest
GET  /sync/download: DownloadResponse
GET  /records/{t}  : RecordsResponse
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from contasync.sync.changelog import ChangeAction, ChangeLogEntry
from contasync.sync.clock import as_utc, format_timestamp


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class RemoteChange(WireModel):
    id: Optional[Union[int, str]] = None
    actor_name: str = "system"
    action: ChangeAction
    entity_type: str
    entity_id: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    timestamp: datetime
    device_id: Optional[str] = None

    @field_validator("entity_id", mode="before")
    @classmethod
    def _stringify_entity_id(cls, value):
        return str(value) if value is not None else None

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_serializer("timestamp")
    def _iso(self, value: datetime) -> str:
        return format_timestamp(value)

    @classmethod
    def from_entry(cls, entry: ChangeLogEntry) -> "RemoteChange":
        return cls(
            id=entry.id,
            actor_name=entry.actor_name,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            old_value=entry.old_value,
            new_value=entry.new_value,
            timestamp=entry.timestamp,
        )


class UploadRequest(WireModel):
    device_id: str
    timestamp: datetime
    changes: list[RemoteChange] = Field(default_factory=list)

    @field_serializer("timestamp")
    def _iso(self, value: datetime) -> str:
        return format_timestamp(value)


class DownloadResponse(WireModel):
    changes: list[RemoteChange] = Field(default_factory=list)


class RecordsResponse(WireModel):
    records: list[dict[str, Any]] = Field(default_factory=list)
