"""
Query parameter translation

Turns generic query parameters into a repository filter, a projection and
the list of associations to embed:

    $where           mapping merged into the filter
    $select          field list (or comma separated string) to project
    $embed           association names to populate on read
    $includeDeleted  keep soft-deleted documents in read results
    anything else    equality condition on that field
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from .storage.interface import Filter

RESERVED_KEYS = ("$where", "$select", "$embed", "$includeDeleted")
SCOPE_FIELD = "scope"


@dataclass
class RepositoryQuery:
    filter: dict[str, Any] = field(default_factory=dict)
    projection: Optional[list[str]] = None
    embed: list[str] = field(default_factory=list)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Sequence):
        return [str(part) for part in value]
    raise ValueError(f"Expected a list or comma separated string, got {type(value).__name__}")


def selected_fields(query: Optional[Mapping[str, Any]]) -> list[str]:
    """Fields named by ``$select``, empty when the whole document is wanted"""
    return _as_list((query or {}).get("$select"))


def build_query(
    query: Optional[Mapping[str, Any]],
    exclude_deleted: bool = False,
    base_filter: Optional[Filter] = None,
) -> RepositoryQuery:
    """
    Build a repository query from request query parameters.

    Args:
        query: Generic query parameters
        exclude_deleted: Filter out soft-deleted documents
        base_filter: Conditions that always apply (e.g. ``{"_id": id}``)

    Returns:
        RepositoryQuery

    Raises:
        ValueError: malformed parameter
    """
    query = dict(query or {})
    result = RepositoryQuery()

    for key, value in query.items():
        if key not in RESERVED_KEYS:
            result.filter[key] = value

    where = query.get("$where")
    if where is not None:
        if not isinstance(where, Mapping):
            raise ValueError("$where must be a mapping")
        result.filter.update(where)

    select = selected_fields(query)
    if select:
        # The scope policy must reach the read post-check
        result.projection = select if SCOPE_FIELD in select else [*select, SCOPE_FIELD]

    result.embed = _as_list(query.get("$embed"))
    result.filter.update(base_filter or {})

    if exclude_deleted and not query.get("$includeDeleted") and "isDeleted" not in result.filter:
        result.filter["isDeleted"] = {"$ne": True}

    return result
