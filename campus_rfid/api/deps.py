"""
Shared FastAPI dependencies.
"""
from fastapi import Depends, HTTPException

from campus_rfid.exceptions import CampusError
from campus_rfid.services.broadcast_service import EventFanout, get_event_fanout
from campus_rfid.services.scan_service import ScanOrchestrator


def get_scan_orchestrator(
    fanout: EventFanout = Depends(get_event_fanout)
) -> ScanOrchestrator:
    return ScanOrchestrator(fanout)


def http_error(error: CampusError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)
