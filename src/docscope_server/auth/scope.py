"""
Document scope policies and the scope comparator

A document may carry a ``scope`` policy:

    {"scope": [...], "readScope": [...], "updateScope": [...],
     "deleteScope": [...], "associateScope": [...]}

Each token is general (``"admin"``: caller needs at least one of them),
forbidden (``"!guest"``: caller must hold none of them) or required
(``"+verified"``: caller must hold all of them).
"""

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

FORBIDDEN_PREFIX = "!"
REQUIRED_PREFIX = "+"


class Action(str, Enum):
    """Document actions a scope policy can restrict"""

    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ASSOCIATE = "associate"


class ScopePolicy(BaseModel):
    """Scope policy attached to a document"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scope: list[str] = Field(default_factory=list)
    read_scope: list[str] = Field(default_factory=list, alias="readScope")
    update_scope: list[str] = Field(default_factory=list, alias="updateScope")
    delete_scope: list[str] = Field(default_factory=list, alias="deleteScope")
    associate_scope: list[str] = Field(default_factory=list, alias="associateScope")

    @field_validator("*", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Optional["ScopePolicy"]:
        """Parse a document's policy; None when it declares none"""
        raw = document.get("scope")
        if not raw:
            return None
        return cls.model_validate(raw)

    def action_scope(self, action: Action | str) -> list[str]:
        """
        Scope list specific to one action.

        Raises:
            ValueError: action is not one of the Action values
        """
        action = Action(action)
        if action is Action.READ:
            return self.read_scope
        if action is Action.UPDATE:
            return self.update_scope
        if action is Action.DELETE:
            return self.delete_scope
        return self.associate_scope

    def effective_scope(self, action: Action | str) -> list[str]:
        """
        Scope list used for one authorization decision.

        The global scope is combined with the action scope only when the
        global scope is non-empty; otherwise the action scope applies alone.
        """
        action_scope = self.action_scope(action)
        if self.scope:
            return self.scope + action_scope
        return list(action_scope)


def split_scope(document_scope: Sequence[str]) -> tuple[set[str], set[str], set[str]]:
    """Split a scope list into (forbidden, required, general) token sets"""
    forbidden: set[str] = set()
    required: set[str] = set()
    general: set[str] = set()

    for token in document_scope:
        if token.startswith(FORBIDDEN_PREFIX):
            forbidden.add(token[len(FORBIDDEN_PREFIX):])
        elif token.startswith(REQUIRED_PREFIX):
            required.add(token[len(REQUIRED_PREFIX):])
        else:
            general.add(token)

    return forbidden, required, general


def compare_scopes(caller_scope: Iterable[str], document_scope: Sequence[str]) -> bool:
    """
    Check a caller's scope set against a document scope list.

    Checks run in a fixed order and stop at the first failure:
    1. the caller holds none of the forbidden tokens
    2. the caller holds every required token
    3. if general tokens exist, the caller holds at least one of them

    Args:
        caller_scope: Scope tokens granted to the caller
        document_scope: Effective scope list of the document

    Returns:
        True if the caller is authorized (always True for an empty list)
    """
    if not document_scope:
        return True

    granted = set(caller_scope)
    forbidden, required, general = split_scope(document_scope)

    if granted & forbidden:
        return False

    if not required <= granted:
        return False

    if general and not (granted & general):
        return False

    return True


def is_authorized(
    document: Mapping[str, Any],
    action: Action | str,
    caller_scope: Iterable[str],
) -> bool:
    """Decide one document for one action (no policy means unrestricted)"""
    policy = ScopePolicy.from_document(document)
    if policy is None:
        return True
    return compare_scopes(caller_scope, policy.effective_scope(action))
