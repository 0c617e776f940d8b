"""
Reports API Endpoints
Dashboard analytics over an optional created_at window
"""
from typing import Optional

from fastapi import APIRouter, Depends

from salescaller.api.v1.dependencies import get_reports_service
from salescaller.domain.services.reports_service import ReportsService

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/calls")
async def call_report(
    start: Optional[str] = None,
    end: Optional[str] = None,
    group_by: str = "daily",
    reports: ReportsService = Depends(get_reports_service)
):
    return await reports.call_stats(start, end, group_by)


@router.get("/revenue")
async def revenue_report(
    start: Optional[str] = None,
    end: Optional[str] = None,
    group_by: str = "daily",
    reports: ReportsService = Depends(get_reports_service)
):
    return await reports.revenue_stats(start, end, group_by)


@router.get("/whatsapp")
async def whatsapp_report(
    start: Optional[str] = None,
    end: Optional[str] = None,
    reports: ReportsService = Depends(get_reports_service)
):
    return await reports.whatsapp_stats(start, end)


@router.get("/conversions")
async def conversion_report(
    start: Optional[str] = None,
    end: Optional[str] = None,
    group_by: str = "daily",
    reports: ReportsService = Depends(get_reports_service)
):
    return await reports.conversion_stats(start, end, group_by)


@router.get("/agents")
async def agent_report(
    agent_id: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    reports: ReportsService = Depends(get_reports_service)
):
    return {"agents": await reports.agent_stats(agent_id, start, end)}


@router.get("/dashboard")
async def dashboard(reports: ReportsService = Depends(get_reports_service)):
    """Today and month-to-date totals, top agents and the last week's activity."""
    return await reports.dashboard()
