"""
Request input validation

Checks applied at the HTTP boundary before the engine runs.
"""

import re
from typing import Any, Optional, Tuple


VALIDATION_LIMITS = {
    "MAX_DOCUMENT_ID_LENGTH": 256,
    "MAX_BULK_ITEMS": 1000,
}

# Document ID validation pattern
DOCUMENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_:-]+$")


def validate_document_id(doc_id: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate document ID format.

    Args:
        doc_id: Document ID to validate

    Returns:
        Tuple of (valid, error_message)
    """
    if not doc_id or not isinstance(doc_id, str):
        return False, "Invalid document ID"

    if len(doc_id) > VALIDATION_LIMITS["MAX_DOCUMENT_ID_LENGTH"]:
        return False, "Document ID too long (max 256 characters)"

    if not DOCUMENT_ID_PATTERN.match(doc_id):
        return False, "Document ID contains invalid characters"

    return True, None


def validate_bulk_delete(payload: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate a bulk delete payload: a list of ``{"_id": ..., "hardDelete"?: bool}``.

    Returns:
        Tuple of (valid, error_message)
    """
    if not isinstance(payload, list) or not payload:
        return False, "Payload must be a non-empty list"

    if len(payload) > VALIDATION_LIMITS["MAX_BULK_ITEMS"]:
        return False, f"Too many items (max {VALIDATION_LIMITS['MAX_BULK_ITEMS']})"

    for item in payload:
        if not isinstance(item, dict):
            return False, "Each item must be an object"
        valid, error = validate_document_id(item.get("_id"))
        if not valid:
            return False, error
        if not isinstance(item.get("hardDelete", False), bool):
            return False, "hardDelete must be a boolean"

    return True, None


def validate_association_payload(payload: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate an add-many payload: child ids or ``{"childId": ..., ...}`` records.

    Returns:
        Tuple of (valid, error_message)
    """
    if not isinstance(payload, list) or not payload:
        return False, "Payload must be a non-empty list"

    if len(payload) > VALIDATION_LIMITS["MAX_BULK_ITEMS"]:
        return False, f"Too many items (max {VALIDATION_LIMITS['MAX_BULK_ITEMS']})"

    for item in payload:
        child_id = item.get("childId") if isinstance(item, dict) else item
        valid, error = validate_document_id(child_id)
        if not valid:
            return False, error

    return True, None
