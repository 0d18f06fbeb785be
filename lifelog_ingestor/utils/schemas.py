"""Schema validation for upstream lifelogs, stored records and ingestion runs."""
from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO 8601, so stored timestamps sort lexically."""
    return to_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class ContentItem(BaseModel):
    """Structured sub-element of a lifelog (heading, speaker turn, transcript segment)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Optional[str] = None
    content: Optional[str] = None
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    start_offset_ms: Optional[int] = Field(default=None, alias="startOffsetMs")
    end_offset_ms: Optional[int] = Field(default=None, alias="endOffsetMs")
    speaker_name: Optional[str] = Field(default=None, alias="speakerName")
    speaker_identifier: Optional[str] = Field(default=None, alias="speakerIdentifier")
    children: list["ContentItem"] = Field(default_factory=list)


class LifelogEntry(BaseModel):
    """Lifelog as returned by the upstream API.

    Only the core fields are typed; the full payload is kept verbatim in
    `raw_payload` so unknown upstream keys survive storage.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    title: Optional[str] = None
    markdown: Optional[str] = None
    contents: list[ContentItem] = Field(default_factory=list)
    created_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("createdAt", "created_at", "startTime"),
    )

    _raw_payload: dict[str, Any] | None = PrivateAttr(default=None)

    @field_validator("contents", mode="before")
    @classmethod
    def _null_contents(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("created_at", mode="before")
    @classmethod
    def _missing_created_at(cls, value: Any) -> Any:
        return utcnow() if value is None or value == "" else value

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LifelogEntry":
        entry = cls.model_validate(payload)
        entry._raw_payload = dict(payload)
        return entry

    @property
    def raw_payload(self) -> dict[str, Any]:
        if self._raw_payload is not None:
            return self._raw_payload
        return self.model_dump(mode="json", by_alias=True)


class LifelogRecord(BaseModel):
    """Persisted lifelog. Only `parsed` and `parsed_at` change after the first write."""

    id: str
    title: Optional[str] = None
    markdown: Optional[str] = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    ingested_at: datetime
    parsed: bool = False
    parsed_at: Optional[datetime] = None
    contents: list[ContentItem] = Field(default_factory=list)


class IngestionWindow(BaseModel):
    """Query range sent upstream. Dates are `YYYY-MM-DD` or `YYYY-MM-DD HH:MM:SS`."""

    model_config = ConfigDict(extra="ignore")

    date: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    timezone: Optional[str] = None

    def to_params(self) -> dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}


class Stats(BaseModel):
    total: int = 0
    parsed: int = 0
    unparsed: int = 0
    latest: Optional[datetime] = None


class IngestionResult(BaseModel):
    """Tally of one ingestion run, complete or partial."""

    run_id: str
    status: str = "running"
    window: IngestionWindow = Field(default_factory=IngestionWindow)
    fetched_count: int = 0
    stored_count: int = 0
    skipped_count: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
