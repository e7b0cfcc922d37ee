# Database models

from app.models.school import School
from app.models.user import User
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.models.subject import ScoreMetric, Subject
from app.models.result_sheet import ResultSheet, ResultSheetEntry, SheetStatus, Term
from app.models.result import Result, ResultStatus
from app.models.pin import Pin
from app.models.notification import AuditLog, Notification
from app.models.archive import ArchivedResult, ArchivedResultSheet

__all__ = [
    "School",
    "User",
    "SchoolClass",
    "Student",
    "Subject",
    "ScoreMetric",
    "ResultSheet",
    "ResultSheetEntry",
    "SheetStatus",
    "Term",
    "Result",
    "ResultStatus",
    "Pin",
    "Notification",
    "AuditLog",
    "ArchivedResult",
    "ArchivedResultSheet",
]
