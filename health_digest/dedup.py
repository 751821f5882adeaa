import hashlib
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


def report_hash(report: str) -> str:
    """SHA-256 hex digest of the report; '' if hashing fails."""
    try:
        return hashlib.sha256(report.encode("utf-8")).hexdigest()
    except (AttributeError, UnicodeError, ValueError) as e:
        logger.error(f"Report hash failed: {e}")
        return ""


def should_notify(report: str, last_hash: Optional[str]) -> Tuple[bool, str]:
    """
    Return (notify, new_hash).

    An empty report never notifies. A failed hash ('') never matches a stored
    one, so hashing errors lean towards sending a duplicate.
    """
    if not report or not report.strip():
        return False, ""
    new_hash = report_hash(report)
    if not new_hash:
        return True, ""
    return new_hash != (last_hash or "").strip(), new_hash
