from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field


class ContentType(str, Enum):
    """Kinds of content that carry an editorial workflow."""

    COURSE = "course"
    LESSON = "lesson"


class Course(BaseModel):
    kind: Literal["course"] = "course"
    id: UUID
    title: str
    instructor_id: Optional[UUID] = None

    @property
    def owner_id(self) -> Optional[UUID]:
        return self.instructor_id


class Lesson(BaseModel):
    kind: Literal["lesson"] = "lesson"
    id: UUID
    title: str
    course_id: Optional[UUID] = None
    instructor_id: Optional[UUID] = None
    course_instructor_id: Optional[UUID] = None

    @property
    def owner_id(self) -> Optional[UUID]:
        return self.instructor_id or self.course_instructor_id


ContentItem = Annotated[Union[Course, Lesson], Field(discriminator="kind")]


class MetadataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class MetadataInput(BaseModel):
    key: str = Field(min_length=1, max_length=128)
    value: str
    type: MetadataType = MetadataType.STRING
    is_public: bool = True
    is_searchable: bool = True


class MetadataEntry(BaseModel):
    id: UUID
    key: str
    value: str
    type: MetadataType
    is_public: bool
    is_searchable: bool


class TagInput(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    category: str = "general"
    weight: float = 1.0


class Tag(BaseModel):
    id: UUID
    name: str
    category: str
    weight: float
