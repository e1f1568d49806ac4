import datetime as dt
import enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


ANONYMOUS_REPORTER = "anonymous"


class UserRole(str, enum.Enum):
    STAFF = "staff"
    SUPERVISOR = "supervisor"
    MANAGER = "manager"
    SAFETY_MANAGER = "safety_manager"
    ADMIN = "admin"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportType(str, enum.Enum):
    NEAR_MISS = "near_miss"
    INCIDENT = "incident"
    HAZARD = "hazard"
    EQUIPMENT = "equipment"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReportStatus(str, enum.Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class LeaveType(str, enum.Enum):
    ANNUAL = "annual"
    SICK = "sick"
    EMERGENCY = "emergency"


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUGGESTION_SENT = "suggestion_sent"


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class NotificationKind(str, enum.Enum):
    TASK = "task"
    SAFETY = "safety"
    DOC = "doc"
    LEAVE = "leave"
    FORUM = "forum"
    MESSAGE = "message"
    BROADCAST = "broadcast"


class NotificationSeverity(str, enum.Enum):
    INFO = "info"
    URGENT = "urgent"


class PortalModel(BaseModel):
    """Base for everything serialized to the SPA (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Entity(PortalModel):
    """A record mirrored from the hosted store, keyed by ``id``."""

    # Columns that are nullable in the store but have a display default here.
    null_defaults: ClassVar[Dict[str, Any]] = {}

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value) if value is not None else value

    @model_validator(mode="before")
    @classmethod
    def _apply_null_defaults(cls, data):
        if not isinstance(data, dict) or not cls.null_defaults:
            return data
        data = dict(data)
        for key, default in cls.null_defaults.items():
            for candidate in (key, to_camel(key)):
                if candidate in data and data[candidate] is None:
                    data[candidate] = default
        return data


class User(Entity):
    null_defaults: ClassVar[Dict[str, Any]] = {"department": "General", "status": UserStatus.ACTIVE, "must_change_password": False}

    name: str
    username: str
    # Salted hash; legacy rows may still hold plaintext until rehashed on login.
    password: Optional[str] = Field(default=None, exclude=True)
    role: UserRole = UserRole.STAFF
    staff_id: str = ""
    avatar: Optional[str] = None
    department: str = "General"
    status: UserStatus = UserStatus.ACTIVE
    must_change_password: bool = False
    manager_id: Optional[str] = None

    @model_validator(mode="after")
    def _default_avatar(self):
        if not self.avatar:
            self.avatar = f"https://picsum.photos/seed/{self.id}/200/200"
        return self

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class Task(Entity):
    null_defaults: ClassVar[Dict[str, Any]] = {
        "description": "",
        "assigned_to": "Unassigned",
        "location": "N/A",
        "department": "General",
    }

    title: str
    description: str = ""
    assigned_to: str = "Unassigned"
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    location: str = "N/A"
    department: str = "General"
    created_at: Optional[dt.datetime] = None


class ExtractedEntities(PortalModel):
    locations: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    personnel: List[str] = Field(default_factory=list)


class SafetyReport(Entity):
    null_defaults: ClassVar[Dict[str, Any]] = {"reporter_id": ANONYMOUS_REPORTER, "image_urls": []}

    reporter_id: str = ANONYMOUS_REPORTER
    type: ReportType = ReportType.HAZARD
    description: str
    severity: Severity = Severity.MEDIUM
    status: ReportStatus = ReportStatus.OPEN
    ai_analysis: Optional[str] = None
    entities: Optional[ExtractedEntities] = None
    image_urls: List[str] = Field(default_factory=list)
    timestamp: Optional[dt.datetime] = None

    @property
    def is_anonymous(self) -> bool:
        return self.reporter_id == ANONYMOUS_REPORTER


class LeaveRequest(Entity):
    null_defaults: ClassVar[Dict[str, Any]] = {"reason": ""}

    staff_id: str
    staff_name: str
    type: LeaveType = LeaveType.ANNUAL
    start_date: dt.date
    end_date: dt.date
    status: LeaveStatus = LeaveStatus.PENDING
    reason: str = ""
    suggestion: Optional[str] = None
    suggested_start_date: Optional[dt.date] = None
    suggested_end_date: Optional[dt.date] = None


class ForumReply(Entity):
    post_id: str
    author_name: str
    content: str
    created_at: Optional[dt.datetime] = None

    @field_validator("post_id", mode="before")
    @classmethod
    def _coerce_post_id(cls, value):
        return str(value) if value is not None else value


class ForumPost(Entity):
    null_defaults: ClassVar[Dict[str, Any]] = {"replies": []}

    author_id: str
    author_name: str
    title: str
    content: str
    replies: List[ForumReply] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None


class ChatMessage(Entity):
    null_defaults: ClassVar[Dict[str, Any]] = {"status": MessageStatus.SENT}

    sender_id: str
    recipient_id: str
    sender_name: str
    text: str
    status: MessageStatus = MessageStatus.SENT
    timestamp: Optional[dt.datetime] = None


class DocFile(Entity):
    name: str
    type: str = "manual"
    uploaded_by: str
    date: Optional[dt.datetime] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None


class AppNotification(PortalModel):
    """Session-only notification; never written to the store."""

    id: str
    title: str
    message: str
    type: NotificationKind
    severity: NotificationSeverity = NotificationSeverity.INFO
    is_read: bool = False
    timestamp: dt.datetime
