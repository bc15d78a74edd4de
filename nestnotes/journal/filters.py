"""Typed search filters.

Each filter kind enumerates one legal combination of constraints and
serialises to the ``filters`` object the search endpoint expects.
"""

from datetime import date
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from .models import Privacy


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.start and self.end and self.start > self.end:
            raise ValueError("date range start must not be after its end")
        return self

    @property
    def is_open(self) -> bool:
        return self.start is None and self.end is None

    def to_payload(self) -> Dict[str, str]:
        payload = {}
        if self.start:
            payload["from"] = self.start.isoformat()
        if self.end:
            payload["to"] = self.end.isoformat()
        return payload


def _clean_terms(values: Tuple[str, ...]) -> Tuple[str, ...]:
    seen = []
    for value in values:
        value = value.strip().lstrip("#@")
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)


class FeedFilter(BaseModel):
    """The personal journal feed, optionally narrowed by tagged people and dates."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["feed"] = "feed"
    people: Tuple[str, ...] = ()
    date_range: Optional[DateRange] = None

    @field_validator("people")
    @classmethod
    def clean_people(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return _clean_terms(v)

    @property
    def is_active(self) -> bool:
        return bool(self.people) or (self.date_range is not None and not self.date_range.is_open)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "feed"}
        if self.people:
            payload["people"] = list(self.people)
        if self.date_range and not self.date_range.is_open:
            payload["dateRange"] = self.date_range.to_payload()
        return payload


class TagFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tags"] = "tags"
    tags: Tuple[str, ...]
    date_range: Optional[DateRange] = None

    @field_validator("tags")
    @classmethod
    def require_tags(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        v = _clean_terms(v)
        if not v:
            raise ValueError("a tag filter needs at least one tag")
        return v

    @property
    def is_active(self) -> bool:
        return True

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "tags", "tags": list(self.tags)}
        if self.date_range and not self.date_range.is_open:
            payload["dateRange"] = self.date_range.to_payload()
        return payload


class PrivacyFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["privacy"] = "privacy"
    levels: Tuple[Privacy, ...]

    @field_validator("levels")
    @classmethod
    def require_levels(cls, v: Tuple[Privacy, ...]) -> Tuple[Privacy, ...]:
        v = tuple(dict.fromkeys(v))
        if not v:
            raise ValueError("a privacy filter needs at least one level")
        return v

    @property
    def is_active(self) -> bool:
        return True

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "privacy", "privacy": [level.value for level in self.levels]}


SearchFilter = Annotated[
    Union[FeedFilter, TagFilter, PrivacyFilter],
    Field(discriminator="kind"),
]

_filter_adapter = TypeAdapter(SearchFilter)


def parse_filter(data: Dict[str, Any]) -> Union[FeedFilter, TagFilter, PrivacyFilter]:
    """Build a filter from a plain dict such as a saved search or config entry."""
    return _filter_adapter.validate_python(data)
