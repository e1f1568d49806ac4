import datetime as dt
from typing import List, Optional

from pydantic import Field

from ..models.entities import (
    LeaveType,
    PortalModel,
    ReportStatus,
    ReportType,
    SafetyReport,
    Severity,
    TaskPriority,
    TaskStatus,
    UserRole,
    UserStatus,
)


# Tasks

class TaskCreate(PortalModel):
    title: str = Field(min_length=1)
    description: str = ""
    assigned_to: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    location: Optional[str] = None
    department: Optional[str] = None


class TaskUpdate(PortalModel):
    title: Optional[str] = None
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Optional[TaskPriority] = None
    location: Optional[str] = None
    department: Optional[str] = None


class TaskStatusUpdate(PortalModel):
    status: TaskStatus


# Safety

class ReportCreate(PortalModel):
    description: str = Field(min_length=1)
    type: ReportType = ReportType.HAZARD
    severity: Severity = Severity.MEDIUM
    anonymous: bool = False
    image_urls: List[str] = Field(default_factory=list)
    analyze: bool = True


class ReportStatusUpdate(PortalModel):
    status: ReportStatus


class AnalyzeRequest(PortalModel):
    description: str = Field(min_length=1)


class SafetyReportView(SafetyReport):
    reporter_name: Optional[str] = None


# Leave

class LeaveCreate(PortalModel):
    type: LeaveType = LeaveType.ANNUAL
    start_date: dt.date
    end_date: dt.date
    reason: str = ""


class LeaveSuggestion(PortalModel):
    suggestion: str = ""
    suggested_start_date: dt.date
    suggested_end_date: dt.date


# Messages

class MessageCreate(PortalModel):
    recipient_id: str
    text: str = Field(min_length=1)


class BroadcastCreate(PortalModel):
    text: str = Field(min_length=1)


class TranslateRequest(PortalModel):
    text: str = Field(min_length=1)
    target_lang: str = Field(default="en", pattern="^(en|ar)$")


class TextResult(PortalModel):
    text: Optional[str] = None
    available: bool


# Forum

class PostCreate(PortalModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)


class ReplyCreate(PortalModel):
    content: str = Field(min_length=1)


# Users

class UserCreate(PortalModel):
    name: str = Field(min_length=1)
    staff_id: str = Field(min_length=1)
    username: Optional[str] = None
    role: UserRole = UserRole.STAFF
    department: Optional[str] = None
    password: Optional[str] = None


class UserUpdate(PortalModel):
    name: Optional[str] = None
    staff_id: Optional[str] = None
    username: Optional[str] = None
    role: Optional[UserRole] = None
    department: Optional[str] = None
    status: Optional[UserStatus] = None


class UserStatusUpdate(PortalModel):
    status: Optional[UserStatus] = None


class PasswordReset(PortalModel):
    new_password: str


class ManagerAssignment(PortalModel):
    manager_id: Optional[str] = None
