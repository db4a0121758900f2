import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def ensure_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Mongo hands back naive datetimes unless the client is tz-aware; those are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.UTC)


class MongoDocumentModel(BaseModel):
    """Base for models persisted as Mongo documents.

    Enum members are stored as their plain string values, and any naive
    datetime coming back from the store is normalised to aware UTC.
    """
    model_config = ConfigDict(use_enum_values=True)

    @model_validator(mode="after")
    def _normalise_datetimes(self):
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, datetime.datetime) and value.tzinfo is None:
                object.__setattr__(self, field_name, ensure_utc(value))
        return self
