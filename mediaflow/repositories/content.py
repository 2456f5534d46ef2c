from __future__ import annotations

from typing import Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.content import (
    ContentItem,
    ContentType,
    Course,
    Lesson,
    MetadataEntry,
    MetadataInput,
    MetadataType,
    Tag,
    TagInput,
)
from ..models.content import ContentMetadataModel, ContentTagModel, CourseModel, LessonModel


class ContentDirectory(Protocol):
    """Uniform lookup over every content kind that can carry a workflow."""

    def resolve(self, content_type: ContentType, content_id: UUID) -> ContentItem | None: ...

    def resolve_many(
        self, refs: Iterable[tuple[ContentType, UUID]]
    ) -> dict[tuple[ContentType, UUID], ContentItem]: ...


class SqlAlchemyContentDirectory:
    """Resolves courses and lessons with one query per content kind."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def resolve(self, content_type: ContentType, content_id: UUID) -> ContentItem | None:
        return self.resolve_many([(content_type, content_id)]).get((content_type, content_id))

    def resolve_many(
        self, refs: Iterable[tuple[ContentType, UUID]]
    ) -> dict[tuple[ContentType, UUID], ContentItem]:
        course_ids: set[UUID] = set()
        lesson_ids: set[UUID] = set()
        for content_type, content_id in refs:
            if ContentType(content_type) is ContentType.COURSE:
                course_ids.add(content_id)
            else:
                lesson_ids.add(content_id)

        resolved: dict[tuple[ContentType, UUID], ContentItem] = {}
        if course_ids:
            for course in self._session.scalars(select(CourseModel).where(CourseModel.id.in_(course_ids))):
                resolved[(ContentType.COURSE, course.id)] = Course(
                    id=course.id,
                    title=course.title,
                    instructor_id=course.instructor_id,
                )
        if lesson_ids:
            rows = self._session.execute(
                select(LessonModel, CourseModel.instructor_id)
                .outerjoin(CourseModel, CourseModel.id == LessonModel.course_id)
                .where(LessonModel.id.in_(lesson_ids))
            ).all()
            for lesson, course_instructor_id in rows:
                resolved[(ContentType.LESSON, lesson.id)] = Lesson(
                    id=lesson.id,
                    title=lesson.title,
                    course_id=lesson.course_id,
                    instructor_id=lesson.instructor_id,
                    course_instructor_id=course_instructor_id,
                )
        return resolved

    def create_course(self, title: str, instructor_id: UUID | None = None) -> Course:
        model = CourseModel(title=title, instructor_id=instructor_id)
        self._session.add(model)
        self._session.flush()
        return Course(id=model.id, title=model.title, instructor_id=model.instructor_id)

    def create_lesson(
        self,
        title: str,
        course_id: UUID | None = None,
        instructor_id: UUID | None = None,
    ) -> Lesson:
        model = LessonModel(title=title, course_id=course_id, instructor_id=instructor_id)
        self._session.add(model)
        self._session.flush()
        course = self._session.get(CourseModel, course_id) if course_id else None
        return Lesson(
            id=model.id,
            title=model.title,
            course_id=model.course_id,
            instructor_id=model.instructor_id,
            course_instructor_id=course.instructor_id if course else None,
        )


class SqlAlchemyContentAttributesRepository:
    """Descriptive metadata and tags attached to courses and lessons."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add_metadata(self, content_id: UUID, content_type: ContentType, entry: MetadataInput) -> UUID:
        model = ContentMetadataModel(
            content_id=content_id,
            content_type=content_type.value,
            metadata_key=entry.key,
            metadata_value=entry.value,
            metadata_type=entry.type.value,
            is_public=entry.is_public,
            is_searchable=entry.is_searchable,
        )
        self._session.add(model)
        self._session.flush()
        return model.id

    def update_metadata(self, metadata_id: UUID, entry: MetadataInput) -> bool:
        model = self._session.get(ContentMetadataModel, metadata_id)
        if model is None:
            return False
        model.metadata_key = entry.key
        model.metadata_value = entry.value
        model.metadata_type = entry.type.value
        model.is_public = entry.is_public
        model.is_searchable = entry.is_searchable
        self._session.flush()
        return True

    def list_metadata(
        self, content_id: UUID, content_type: ContentType, include_private: bool = False
    ) -> list[MetadataEntry]:
        stmt = select(ContentMetadataModel).where(
            ContentMetadataModel.content_id == content_id,
            ContentMetadataModel.content_type == content_type.value,
        )
        if not include_private:
            stmt = stmt.where(ContentMetadataModel.is_public.is_(True))
        stmt = stmt.order_by(ContentMetadataModel.metadata_key)
        return [
            MetadataEntry(
                id=row.id,
                key=row.metadata_key,
                value=row.metadata_value,
                type=MetadataType(row.metadata_type),
                is_public=row.is_public,
                is_searchable=row.is_searchable,
            )
            for row in self._session.scalars(stmt).all()
        ]

    def add_tags(self, content_id: UUID, content_type: ContentType, tags: Iterable[TagInput]) -> list[UUID]:
        models = [
            ContentTagModel(
                content_id=content_id,
                content_type=content_type.value,
                tag_name=tag.name,
                tag_category=tag.category,
                tag_weight=tag.weight,
            )
            for tag in tags
        ]
        self._session.add_all(models)
        self._session.flush()
        return [model.id for model in models]

    def list_tags(self, content_id: UUID, content_type: ContentType) -> list[Tag]:
        rows = self._session.scalars(
            select(ContentTagModel)
            .where(
                ContentTagModel.content_id == content_id,
                ContentTagModel.content_type == content_type.value,
            )
            .order_by(ContentTagModel.tag_weight.desc(), ContentTagModel.tag_name)
        ).all()
        return [Tag(id=row.id, name=row.tag_name, category=row.tag_category, weight=row.tag_weight) for row in rows]
