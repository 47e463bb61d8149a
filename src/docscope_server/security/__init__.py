"""
Security module

Input validation for the HTTP boundary.
"""

from .validation import (
    VALIDATION_LIMITS,
    DOCUMENT_ID_PATTERN,
    validate_document_id,
    validate_bulk_delete,
    validate_association_payload,
)

__all__ = [
    "VALIDATION_LIMITS",
    "DOCUMENT_ID_PATTERN",
    "validate_document_id",
    "validate_bulk_delete",
    "validate_association_payload",
]
