"""Shared response shaping."""
from typing import Any, Callable, Optional

from snaptag.models.file_record import FileRecord
from snaptag.schemas.file import FileResponse
from snaptag.services.bulk_service import BulkOutcome


def file_to_response(record: FileRecord) -> dict:
    """Convert SQLAlchemy model to camelCase JSON-ready dict."""
    return FileResponse.serialize(record)


def error_response(message: str, details: Optional[Any] = None) -> dict:
    return {"success": False, "error": message, "details": details}


def bulk_response(
    outcome: BulkOutcome,
    message: str,
    serialize: Callable[[Any], Any] = file_to_response,
) -> dict:
    """Body for a bulk endpoint; pair with ``outcome.status_code``."""
    return {
        "success": outcome.succeeded > 0,
        "status": outcome.status.value,
        "message": message,
        "data": {
            "results": [serialize(item.value) for item in outcome.successes()],
            "errors": [{"id": item.key, "error": item.error} for item in outcome.failures()],
            "totalSucceeded": outcome.succeeded,
            "totalFailed": outcome.failed,
            "totalRequested": outcome.requested,
            "processingTimeSeconds": outcome.processing_time_seconds,
        },
    }
