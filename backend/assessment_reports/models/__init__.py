from assessment_reports.models.models import (
    Answer,
    Assessment,
    Assignment,
    AssignmentDimensionScore,
    Base,
    Benchmark,
    Client,
    Dimension,
    FeedbackEntry,
    Field,
    Group,
    GroupMember,
    Industry,
    Profile,
    ReportData,
)

__all__ = [
    "Base",
    "Industry",
    "Client",
    "Profile",
    "Assessment",
    "Dimension",
    "Field",
    "Group",
    "GroupMember",
    "Assignment",
    "Answer",
    "AssignmentDimensionScore",
    "Benchmark",
    "FeedbackEntry",
    "ReportData",
]
