"""
Dashboard deep search across everything the session can see.
"""
from typing import Iterable, List, Optional

from pydantic import Field

from ..models.entities import DocFile, LeaveRequest, PortalModel, SafetyReport, Task, User
from .session import PortalSession


MIN_QUERY_LENGTH = 1


class SearchResults(PortalModel):
    tasks: List[Task] = Field(default_factory=list)
    reports: List[SafetyReport] = Field(default_factory=list)
    docs: List[DocFile] = Field(default_factory=list)
    staff: List[User] = Field(default_factory=list)
    leave: List[LeaveRequest] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.tasks) + len(self.reports) + len(self.docs) + len(self.staff) + len(self.leave)


def _hit(q: str, values: Iterable[Optional[str]]) -> bool:
    return any(q in (v or "").lower() for v in values)


def _report_hit(q: str, report: SafetyReport) -> bool:
    fields = [report.description, report.ai_analysis]
    if report.entities is not None:
        fields += report.entities.locations + report.entities.equipment + report.entities.personnel
    return _hit(q, fields)


def deep_search(session: PortalSession, query: str) -> SearchResults:
    q = (query or "").strip().lower()
    if len(q) < MIN_QUERY_LENGTH:
        return SearchResults()
    view = session.visibility
    return SearchResults(
        tasks=[t for t in view.tasks() if _hit(q, (t.title, t.description, t.location))],
        reports=[r for r in view.safety_reports() if _report_hit(q, r)],
        docs=[d for d in view.documents() if _hit(q, (d.name,))],
        staff=[u for u in view.users() if _hit(q, (u.name, u.staff_id, u.department))],
        leave=[l for l in view.leave_requests() if _hit(q, (l.staff_name, l.reason, l.type.value))],
    )
