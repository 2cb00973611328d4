from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response

from housecup.dependencies import get_attendance
from housecup.models import AttendanceStats, MarkRequest, MarkResponse, ScanRequest, TicketOut, TicketRequest
from housecup.security import Identity, get_current_user, require_role
from housecup.services.attendance import AttendanceMarker

router = APIRouter(tags=["attendance"])

scanners = require_role("admin", "house_admin")


@router.post("/admin/attendance/tickets", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
def issue_ticket(payload: TicketRequest, user: Identity = Depends(scanners), marker: AttendanceMarker = Depends(get_attendance)):
    return marker.issue_ticket(payload.registration_id, user, event_id=payload.event_id, house_id=payload.house_id)


@router.post("/admin/attendance/mark", response_model=MarkResponse)
def mark_attended(payload: MarkRequest, user: Identity = Depends(scanners), marker: AttendanceMarker = Depends(get_attendance)):
    return marker.mark_attended(payload.registration_id, user)


@router.post("/admin/attendance/scan", response_model=MarkResponse)
def scan_ticket(payload: ScanRequest, user: Identity = Depends(scanners), marker: AttendanceMarker = Depends(get_attendance)):
    return marker.scan_ticket(payload.ticket_id, user)


@router.get("/admin/attendance/stats", response_model=AttendanceStats)
def attendance_stats(
    event_id: Optional[str] = Query(None),
    user: Identity = Depends(scanners),
    marker: AttendanceMarker = Depends(get_attendance),
):
    return AttendanceStats(event_id=event_id, **marker.stats(event_id))


@router.get("/attendance/{registration_id}/qrcode")
def ticket_qrcode(registration_id: str, user: Identity = Depends(get_current_user), marker: AttendanceMarker = Depends(get_attendance)) -> Response:
    return Response(content=marker.ticket_qrcode(registration_id), media_type="image/png")
