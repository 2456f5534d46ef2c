from mediaflow.models.content import ContentMetadataModel, ContentTagModel, CourseModel, LessonModel
from mediaflow.models.job import ProcessingJob
from mediaflow.models.media import MediaAsset, Rendition
from mediaflow.models.subtitle import SubtitleSegment, SubtitleSet
from mediaflow.models.workflow import ContentWorkflowModel, WorkflowHistoryModel

__all__ = [
    "ContentMetadataModel",
    "ContentTagModel",
    "CourseModel",
    "LessonModel",
    "ProcessingJob",
    "MediaAsset",
    "Rendition",
    "SubtitleSegment",
    "SubtitleSet",
    "ContentWorkflowModel",
    "WorkflowHistoryModel",
]
