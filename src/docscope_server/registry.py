"""
Collection descriptors and the association registry

A Collection bundles a repository with its association metadata and
optional hooks. The CollectionRegistry links descriptors once at setup:
association targets are resolved to Collection objects and each MANY_MANY
association learns the name of its reciprocal on the child collection.
"""

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union

from .errors import ErrorKind, raise_error
from .storage.interface import DocumentRepository, DocumentStore

logger = logging.getLogger(__name__)


class AssociationKind(str, Enum):
    ONE_MANY = "ONE_MANY"
    MANY_MANY = "MANY_MANY"


@dataclass(frozen=True)
class OneManyAssociation:
    """Virtual relationship stored as a foreign key on the child"""

    model: str
    foreign_field: str
    kind: ClassVar[AssociationKind] = AssociationKind.ONE_MANY


@dataclass(frozen=True)
class ManyManyAssociation:
    """Relationship stored as mirrored linking entries on both documents"""

    model: str
    linking_model: Optional[str] = None  # key for extra fields in get_all output
    kind: ClassVar[AssociationKind] = AssociationKind.MANY_MANY


Association = Union[OneManyAssociation, ManyManyAssociation]


def association_from_dict(data: Mapping[str, Any]) -> Association:
    """
    Build an association from a declarative mapping.

    Accepts ``{"type": "ONE_MANY", "model": ..., "foreignField": ...}`` or
    ``{"type": "MANY_MANY", "model": ..., "linkingModel": ...}``.
    """
    kind = data.get("type")
    model = data.get("model")
    if not model:
        raise_error(ErrorKind.INTERNAL, "Association model is not defined.")

    if kind == AssociationKind.ONE_MANY:
        foreign_field = data.get("foreignField") or data.get("foreign_field")
        if not foreign_field:
            raise_error(ErrorKind.INTERNAL, "ONE_MANY association requires a foreign field.")
        return OneManyAssociation(model=model, foreign_field=foreign_field)

    if kind == AssociationKind.MANY_MANY:
        return ManyManyAssociation(
            model=model,
            linking_model=data.get("linkingModel") or data.get("linking_model"),
        )

    raise_error(ErrorKind.INTERNAL, "Association type incorrectly defined.")


Hook = Callable[..., Any]


@dataclass
class CollectionHooks:
    """Optional per-collection hooks; each may be sync or async"""

    list_post: Optional[Hook] = None  # (query, documents) -> documents
    find_post: Optional[Hook] = None  # (query, document) -> document
    create_pre: Optional[Hook] = None  # (payload) -> payload
    create_post: Optional[Hook] = None  # (payload, document) -> document
    update_pre: Optional[Hook] = None  # (id, payload) -> payload
    update_post: Optional[Hook] = None  # (payload, document) -> document
    delete_pre: Optional[Hook] = None  # (id, payload) -> None
    delete_post: Optional[Hook] = None  # (payload, deleted) -> None


@dataclass
class Collection:
    """Descriptor passed to every engine operation"""

    name: str
    repository: DocumentRepository
    associations: dict[str, Association] = field(default_factory=dict)
    hooks: CollectionHooks = field(default_factory=CollectionHooks)

    _targets: dict[str, "Collection"] = field(default_factory=dict, init=False, repr=False)
    _reciprocals: dict[str, Optional[str]] = field(default_factory=dict, init=False, repr=False)
    _ambiguous: set[str] = field(default_factory=set, init=False, repr=False)

    def association(self, name: str) -> Association:
        association = self.associations.get(name)
        if association is None:
            raise_error(ErrorKind.INTERNAL, f"{name} association does not exist.")
        return association

    def target(self, name: str) -> "Collection":
        """Child collection of an association"""
        self.association(name)
        target = self._targets.get(name)
        if target is None:
            raise_error(ErrorKind.INTERNAL, f"{name} association target is not registered.")
        return target

    def reciprocal(self, name: str) -> str:
        """Name of the MANY_MANY association on the child pointing back here"""
        if name in self._ambiguous:
            raise_error(
                ErrorKind.INTERNAL,
                f"{name} association is ambiguous: {self._targets[name].name} has "
                f"several MANY_MANY associations to {self.name}.",
            )
        reciprocal = self._reciprocals.get(name)
        if reciprocal is None:
            raise_error(ErrorKind.INTERNAL, f"{name} reciprocal association does not exist.")
        return reciprocal

    @property
    def virtual_associations(self) -> list[str]:
        """Names of ONE_MANY associations (never stored on this collection)"""
        return [
            name
            for name, association in self.associations.items()
            if isinstance(association, OneManyAssociation)
        ]


class CollectionRegistry:
    """Registers collections against a store and links their associations"""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._collections: dict[str, Collection] = {}

    def register(
        self,
        name: str,
        associations: Optional[Mapping[str, Association | Mapping[str, Any]]] = None,
        hooks: Optional[CollectionHooks] = None,
    ) -> Collection:
        if name in self._collections:
            raise ValueError(f"Collection already registered: {name}")

        parsed: dict[str, Association] = {}
        for association_name, association in (associations or {}).items():
            if isinstance(association, Mapping):
                association = association_from_dict(association)
            parsed[association_name] = association

        collection = Collection(
            name=name,
            repository=self.store.repository(name),
            associations=parsed,
            hooks=hooks or CollectionHooks(),
        )
        self._collections[name] = collection
        return collection

    def resolve(self) -> None:
        """
        Link every association to its target collection.

        Raises:
            EngineError: (INTERNAL) an association targets an unregistered model
        """
        for collection in self._collections.values():
            collection._targets.clear()
            collection._reciprocals.clear()
            collection._ambiguous.clear()

            for name, association in collection.associations.items():
                target = self._collections.get(association.model)
                if target is None:
                    raise_error(
                        ErrorKind.INTERNAL,
                        f"{collection.name}.{name} targets unregistered model {association.model}.",
                    )
                collection._targets[name] = target

                if not isinstance(association, ManyManyAssociation):
                    continue

                candidates = [
                    candidate_name
                    for candidate_name, candidate in target.associations.items()
                    if isinstance(candidate, ManyManyAssociation)
                    and candidate.model == collection.name
                ]
                if len(candidates) > 1:
                    logger.warning(
                        "Ambiguous reciprocal for %s.%s: %s",
                        collection.name, name, ", ".join(candidates),
                    )
                    collection._ambiguous.add(name)
                collection._reciprocals[name] = candidates[0] if len(candidates) == 1 else None

    def __getitem__(self, name: str) -> Collection:
        return self._collections[name]

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def __iter__(self) -> Iterator[Collection]:
        return iter(self._collections.values())

    def __len__(self) -> int:
        return len(self._collections)
