"""
Table registry for the hosted store.

Maps store rows (snake_case columns, nullable values) onto entity fields and
records how each table is ordered and nested.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from .entities import (
    ChatMessage,
    DocFile,
    Entity,
    ForumPost,
    ForumReply,
    LeaveRequest,
    SafetyReport,
    Task,
    User,
)


@dataclass(frozen=True)
class TableSpec:
    name: str
    model: Type[Entity]
    order_column: Optional[str] = "created_at"
    descending: bool = True
    select: str = "*"
    # store column -> entity field
    column_aliases: Mapping[str, str] = field(default_factory=dict)
    # child tables are merged into a list field of their parent record
    parent: Optional[str] = None
    parent_key: Optional[str] = None
    parent_field: Optional[str] = None
    # fields filled from child tables; never written back as columns
    nested_fields: Tuple[str, ...] = ()

    @property
    def is_child(self) -> bool:
        return self.parent is not None

    def to_fields(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Rename store columns to entity fields; keys absent from the row stay absent."""
        return {self.column_aliases.get(k, k): v for k, v in row.items()}

    def to_row(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        reverse = {v: k for k, v in self.column_aliases.items()}
        return {reverse.get(k, k): v for k, v in fields.items() if k not in self.nested_fields}

    def to_entity(self, row: Mapping[str, Any]) -> Entity:
        return self.model.model_validate(self.to_fields(row))


USERS = "users"
TASKS = "tasks"
DOCUMENTS = "documents"
SAFETY_REPORTS = "safety_reports"
LEAVE_REQUESTS = "leave_requests"
FORUM_POSTS = "forum_posts"
FORUM_REPLIES = "forum_replies"
MESSAGES = "messages"


TABLES: Dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec(USERS, User, order_column=None),
        TableSpec(TASKS, Task),
        TableSpec(DOCUMENTS, DocFile, column_aliases={"created_at": "date"}),
        TableSpec(SAFETY_REPORTS, SafetyReport, column_aliases={"created_at": "timestamp"}),
        TableSpec(LEAVE_REQUESTS, LeaveRequest),
        TableSpec(
            FORUM_POSTS,
            ForumPost,
            select="*, forum_replies(*)",
            column_aliases={"forum_replies": "replies"},
            nested_fields=("replies",),
        ),
        TableSpec(
            FORUM_REPLIES,
            ForumReply,
            descending=False,
            parent=FORUM_POSTS,
            parent_key="post_id",
            parent_field="replies",
        ),
        TableSpec(MESSAGES, ChatMessage, descending=False, column_aliases={"created_at": "timestamp"}),
    )
}

# Tables with their own collection in the mirror; replies live inside posts.
MIRRORED_TABLES: List[str] = [name for name, spec in TABLES.items() if not spec.is_child]

# Every table gets a change feed, including child tables.
SUBSCRIBED_TABLES: List[str] = list(TABLES)


def get_table(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise KeyError(f"Unknown table: {name}") from None
