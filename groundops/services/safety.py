import asyncio
import uuid
from typing import List, Optional

from ..errors import NotFound, PermissionDenied
from ..logging import get_logger
from ..models.entities import ANONYMOUS_REPORTER, ReportStatus, ReportType, SafetyReport, Severity
from ..models.tables import SAFETY_REPORTS
from .analysis import SafetyAnalysis
from .permissions import can_review_safety
from .session import PortalSession


logger = get_logger(__name__)


async def analyze_description(session: PortalSession, description: str) -> Optional[SafetyAnalysis]:
    """Best-effort AI analysis; a slow or failing analyzer never blocks a report."""
    if session.analyzer is None or not description.strip():
        return None
    try:
        return await asyncio.wait_for(
            session.analyzer.analyze_safety_report(description),
            timeout=session.cfg.analysis_timeout_s,
        )
    except asyncio.TimeoutError:
        session.log.warning("safety_analysis_timeout", timeout_s=session.cfg.analysis_timeout_s)
        return None


async def submit_report(
    session: PortalSession,
    *,
    description: str,
    type: ReportType = ReportType.HAZARD,
    severity: Severity = Severity.MEDIUM,
    anonymous: bool = False,
    image_urls: Optional[List[str]] = None,
    analysis: Optional[SafetyAnalysis] = None,
    analyze: bool = True,
) -> SafetyReport:
    if analysis is None and analyze:
        analysis = await analyze_description(session, description)
    report = SafetyReport(
        id=str(uuid.uuid4()),
        reporter_id=ANONYMOUS_REPORTER if anonymous else session.user.id,
        type=type,
        description=description,
        severity=severity,
        status=ReportStatus.OPEN,
        ai_analysis=analysis.summary if analysis else None,
        entities=analysis.entities if analysis else None,
        image_urls=image_urls or [],
    )
    if anonymous:
        # nothing that ties the report to the session
        logger.info("safety_report_submit", severity=severity.value, anonymous=True)
    else:
        session.log.info("safety_report_submit", report_id=report.id, severity=severity.value, anonymous=False)
    return await session.insert(SAFETY_REPORTS, report)


async def set_report_status(session: PortalSession, report_id: str, status: ReportStatus) -> SafetyReport:
    if not can_review_safety(session.user):
        raise PermissionDenied("Only safety reviewers can change report status")
    report = session.mirror.get(SAFETY_REPORTS, report_id)
    if report is None:
        raise NotFound("Report not found")
    if report.status == status:
        return report
    return await session.update(SAFETY_REPORTS, report_id, {"status": status})
