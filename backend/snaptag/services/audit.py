"""Security and audit events, written to the ``snaptag.audit`` logger."""
import logging

audit_logger = logging.getLogger("snaptag.audit")


def _format(event: str, user_id: str, fields: dict) -> str:
    extra = " ".join(f"{key}={value!r}" for key, value in fields.items())
    return f"{event} user={user_id} {extra}".rstrip()


def audit(event: str, user_id: str, **fields) -> None:
    audit_logger.info(_format(event, user_id, fields))


def security(event: str, user_id: str, **fields) -> None:
    """Rejected or suspicious requests."""
    audit_logger.warning(_format(event, user_id, fields))
