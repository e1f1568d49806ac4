from typing import List, Optional

from fastapi import APIRouter, Depends

from ..auth.security import get_active_session
from ..models.entities import SafetyReport
from ..schemas.portal import AnalyzeRequest, ReportCreate, ReportStatusUpdate, SafetyReportView
from ..services import safety as safety_service
from ..services.analysis import SafetyAnalysis
from ..services.session import PortalSession


router = APIRouter(prefix="/safety", tags=["safety"])


def _view(session: PortalSession, report: SafetyReport) -> SafetyReportView:
    return SafetyReportView(**dict(report), reporter_name=session.visibility.reporter_name(report))


@router.get("", response_model=List[SafetyReportView])
def list_reports(session: PortalSession = Depends(get_active_session)):
    return [_view(session, r) for r in session.visibility.safety_reports()]


@router.post("", response_model=SafetyReportView, status_code=201)
async def submit_report(body: ReportCreate, session: PortalSession = Depends(get_active_session)):
    report = await safety_service.submit_report(
        session,
        description=body.description,
        type=body.type,
        severity=body.severity,
        anonymous=body.anonymous,
        image_urls=body.image_urls,
        analyze=body.analyze,
    )
    return _view(session, report)


@router.post("/analyze", response_model=Optional[SafetyAnalysis])
async def analyze(body: AnalyzeRequest, session: PortalSession = Depends(get_active_session)):
    """Preview the AI analysis for a draft report; null when analysis is unavailable."""
    return await safety_service.analyze_description(session, body.description)


@router.post("/{report_id}/status", response_model=SafetyReportView)
async def set_status(report_id: str, body: ReportStatusUpdate, session: PortalSession = Depends(get_active_session)):
    report = await safety_service.set_report_status(session, report_id, body.status)
    return _view(session, report)
