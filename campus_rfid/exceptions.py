"""
Domain exceptions raised by the campus services.

Routers translate these into HTTP errors; the scan orchestrator uses
them to tell rejections apart from downstream failures.
"""


class CampusError(Exception):
    """Base class for expected, caller-visible failures."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ScanRejected(CampusError):
    """Inbound scan or transaction refused before any record was written."""


class SubjectNotFound(ScanRejected):
    status_code = 404


class BadgeMismatch(ScanRejected):
    status_code = 400


class NotAuthorized(CampusError):
    status_code = 403


class NotEnrolled(CampusError):
    status_code = 400


class RecordNotFound(CampusError):
    status_code = 404


class InvalidQuery(CampusError):
    status_code = 400
