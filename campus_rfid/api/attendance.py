"""
Attendance API endpoints.
Automatic records come from classroom scans; instructors mark or
correct them here.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import date
import logging

from campus_rfid.database import get_db
from campus_rfid.api.deps import http_error
from campus_rfid.exceptions import CampusError
from campus_rfid.services.attendance_service import AttendanceService
from campus_rfid.services.log_service import paginate
from campus_rfid.schemas.schemas import (
    ManualAttendanceRequest,
    ManualAttendanceResponse,
    AttendancePage,
    AttendanceStatsResponse,
    AttendanceReportResponse
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/attendance", tags=["Attendance"])


@router.post(
    "/mark",
    response_model=ManualAttendanceResponse,
    summary="Mark Attendance",
    description="""
    Instructor marks or corrects a student's attendance for one class on
    one date. Overwrites any existing record for that key, automatic or
    manual. The instructor must teach the class and the student must be
    enrolled in it.
    """
)
async def mark_attendance(
    request: ManualAttendanceRequest,
    db: AsyncSession = Depends(get_db)
):
    try:
        record, created = await AttendanceService.mark_manual(
            db,
            teacher_id=request.teacher_id,
            student_id=request.student_id,
            session_id=request.session_id,
            on_date=request.date,
            status=request.status,
            notes=request.notes,
            late_minutes=request.late_minutes
        )
        await db.commit()
    except CampusError as e:
        raise http_error(e)

    return ManualAttendanceResponse(
        success=True,
        message="Attendance marked successfully" if created else "Attendance updated successfully",
        created=created,
        attendance=record
    )


@router.get(
    "",
    response_model=AttendancePage,
    summary="List Attendance Records"
)
async def list_attendance(
    student_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    on_date: Optional[date] = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    try:
        records, total = await AttendanceService.list_records(
            db,
            student_id=student_id,
            session_id=session_id,
            on_date=on_date,
            page=page,
            limit=limit
        )
        return {"records": records, "pagination": paginate(page, limit, total)}

    except Exception as e:
        logger.error(f"Attendance listing error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/stats",
    response_model=AttendanceStatsResponse,
    summary="Attendance Statistics",
    description="""
    Present / late / absent counts and attendance percentage.

    - `student_id`: one row per class (narrow with `session_id`)
    - `session_id` alone: one row per student; `teacher_id` must be the
      class's instructor
    """
)
async def get_attendance_stats(
    student_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    teacher_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    try:
        stats = await AttendanceService.stats(
            db,
            student_id=student_id,
            session_id=session_id,
            teacher_id=teacher_id
        )
    except CampusError as e:
        raise http_error(e)
    return {"stats": stats}


@router.get(
    "/report",
    response_model=AttendanceReportResponse,
    summary="Attendance Report",
    description="A class's attendance grouped by date (newest first) for its instructor."
)
async def get_attendance_report(
    session_id: str = Query(...),
    teacher_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await AttendanceService.report(
            db,
            teacher_id=teacher_id,
            session_id=session_id,
            start_date=start_date,
            end_date=end_date
        )
    except CampusError as e:
        raise http_error(e)
