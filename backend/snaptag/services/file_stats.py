"""Per-user file statistics."""
from collections import Counter
from typing import Iterable

from snaptag.models.file_record import FileRecord, FileStatus


def summarize_files(records: Iterable[FileRecord]) -> dict:
    records = list(records)
    status_counts = Counter(r.status or FileStatus.UPLOADED.value for r in records)
    type_counts = Counter(
        (r.mime_type.split("/")[0] if r.mime_type else "unknown") for r in records
    )

    total_bytes = sum(r.file_size or 0 for r in records)
    total_mb = round(total_bytes / (1024 * 1024), 2)
    total_gb = round(total_bytes / (1024 * 1024 * 1024), 2)

    return {
        "total_files": len(records),
        "files_with_ai_analysis": sum(1 for r in records if r.has_ai_analysis),
        "status_distribution": dict(status_counts),
        "file_type_distribution": dict(type_counts),
        "storage_usage": {
            "total_bytes": total_bytes,
            "total_mb": total_mb,
            "total_gb": total_gb,
            "human_readable": f"{total_gb} GB" if total_gb > 1 else f"{total_mb} MB",
        },
    }
