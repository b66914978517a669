# ABOUTME: Contracts for the host repository services the packaging engine talks to
# ABOUTME: Protocols for content and role services plus an in-memory reference host
"""Host repository contracts.

Protocols define the seams between the packaging engine and the repository
it archives, enabling:
- Swappable hosts (a live repository, the in-memory host below)
- Easy call recording in tests
"""

import itertools
import logging
from io import BytesIO
from typing import Any, BinaryIO, Protocol

from aip_replicate.exceptions import ObjectNotFoundError
from aip_replicate.models import Bitstream, DigitalObject, ObjectKind
from aip_replicate.roles import Group, Person, RoleAssociation

logger = logging.getLogger(__name__)


class ContentService(Protocol):
    """Object metadata, payload and hierarchy access."""

    def find(self, identifier: str) -> DigitalObject | None: ...

    def exists(self, identifier: str) -> bool: ...

    def children(self, obj: DigitalObject) -> list[DigitalObject]: ...

    def retrieve(self, bitstream: Bitstream) -> BinaryIO: ...

    def create(
        self, kind: ObjectKind, identifier: str, parent_identifier: str | None
    ) -> DigitalObject: ...

    def set_metadata(self, obj: DigitalObject, name: str, value: str) -> None:
        """Replace every value of a field with ``value``."""
        ...

    def add_metadata(self, obj: DigitalObject, name: str, value: str) -> None:
        """Append one value to a repeatable field."""
        ...

    def clear_metadata(self, obj: DigitalObject) -> None: ...

    def has_field(self, name: str) -> bool:
        """Whether the field is registered in the repository's metadata registry."""
        ...

    def set_logo(self, obj: DigitalObject, stream: BinaryIO) -> None: ...

    def add_bitstream(
        self,
        obj: DigitalObject,
        bundle: str,
        stream: BinaryIO,
        name: str | None = None,
        description: str | None = None,
        mimetype: str | None = None,
    ) -> Bitstream: ...

    def remove_bitstreams(self, obj: DigitalObject) -> None: ...

    def update(self, obj: DigitalObject) -> None: ...


class RoleService(Protocol):
    """Groups, people and the roles they hold on objects."""

    def all_groups(self) -> list[Group]: ...

    def all_people(self) -> list[Person]: ...

    def roles_for(self, obj: DigitalObject) -> list[RoleAssociation]: ...

    def find_group(self, name: str) -> Group | None: ...

    def find_person(self, email: str) -> Person | None: ...

    def save_group(self, group: Group) -> None: ...

    def save_person(self, person: Person) -> None: ...

    def assign_role(self, obj: DigitalObject, role: str, group: str) -> None: ...


class InMemoryRepository:
    """Dictionary-backed host implementing ContentService and RoleService.

    Every mutating call is appended to ``calls`` as ``(method, identifier, *args)``
    so callers can assert exactly which writes happened.

    Attributes:
        objects: Live objects by identifier
        registry: Registered metadata field names; None accepts any field
        calls: Log of mutating calls
    """

    def __init__(self, registry: set[str] | None = None):
        self.objects: dict[str, DigitalObject] = {}
        self.registry = registry
        self.groups: dict[str, Group] = {}
        self.people: dict[str, Person] = {}
        self.roles: dict[str, list[RoleAssociation]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self._ids = itertools.count(1)

    def add(self, obj: DigitalObject) -> DigitalObject:
        """Register an existing object and link it under its parent."""
        self.objects[obj.identifier] = obj
        parent = self.objects.get(obj.parent_identifier) if obj.parent_identifier else None
        if parent is not None and obj.identifier not in parent.children:
            parent.children.append(obj.identifier)
        return obj

    def remove(self, identifier: str) -> None:
        """Drop an object and its subtree."""
        obj = self.objects.pop(identifier, None)
        if obj is None:
            return
        for child in list(obj.children):
            self.remove(child)
        parent = self.objects.get(obj.parent_identifier) if obj.parent_identifier else None
        if parent is not None and identifier in parent.children:
            parent.children.remove(identifier)

    def calls_named(self, method: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == method]

    # ContentService

    def find(self, identifier: str) -> DigitalObject | None:
        return self.objects.get(identifier)

    def exists(self, identifier: str) -> bool:
        return identifier in self.objects

    def children(self, obj: DigitalObject) -> list[DigitalObject]:
        found = []
        for identifier in obj.children:
            child = self.objects.get(identifier)
            if child is None:
                raise ObjectNotFoundError(identifier)
            found.append(child)
        return found

    def retrieve(self, bitstream: Bitstream) -> BinaryIO:
        return BytesIO(bitstream.content or b"")

    def create(
        self, kind: ObjectKind, identifier: str, parent_identifier: str | None
    ) -> DigitalObject:
        self.calls.append(("create", identifier, kind, parent_identifier))
        return self.add(
            DigitalObject(identifier=identifier, kind=kind, parent_identifier=parent_identifier)
        )

    def set_metadata(self, obj: DigitalObject, name: str, value: str) -> None:
        self.calls.append(("set_metadata", obj.identifier, name, value))
        obj.set_metadata(name, value)

    def add_metadata(self, obj: DigitalObject, name: str, value: str) -> None:
        self.calls.append(("add_metadata", obj.identifier, name, value))
        obj.metadata.append((name, value))

    def clear_metadata(self, obj: DigitalObject) -> None:
        self.calls.append(("clear_metadata", obj.identifier))
        obj.metadata = []

    def has_field(self, name: str) -> bool:
        return self.registry is None or name in self.registry

    def set_logo(self, obj: DigitalObject, stream: BinaryIO) -> None:
        self.calls.append(("set_logo", obj.identifier))
        obj.logo = Bitstream(id=str(next(self._ids)), content=stream.read(), bundle="LOGO")

    def add_bitstream(
        self,
        obj: DigitalObject,
        bundle: str,
        stream: BinaryIO,
        name: str | None = None,
        description: str | None = None,
        mimetype: str | None = None,
    ) -> Bitstream:
        self.calls.append(("add_bitstream", obj.identifier, bundle, name))
        bitstream = Bitstream(
            id=str(next(self._ids)),
            content=stream.read(),
            name=name,
            bundle=bundle,
            mimetype=mimetype or "application/octet-stream",
            description=description,
        )
        obj.bitstreams.append(bitstream)
        return bitstream

    def remove_bitstreams(self, obj: DigitalObject) -> None:
        self.calls.append(("remove_bitstreams", obj.identifier))
        obj.bitstreams = []

    def update(self, obj: DigitalObject) -> None:
        self.calls.append(("update", obj.identifier))
        self.objects[obj.identifier] = obj

    # RoleService

    def all_groups(self) -> list[Group]:
        return list(self.groups.values())

    def all_people(self) -> list[Person]:
        return list(self.people.values())

    def roles_for(self, obj: DigitalObject) -> list[RoleAssociation]:
        return list(self.roles.get(obj.identifier, []))

    def find_group(self, name: str) -> Group | None:
        return self.groups.get(name)

    def find_person(self, email: str) -> Person | None:
        return self.people.get(email)

    def save_group(self, group: Group) -> None:
        self.calls.append(("save_group", group.name))
        self.groups[group.name] = group

    def save_person(self, person: Person) -> None:
        self.calls.append(("save_person", person.email))
        self.people[person.email] = person

    def assign_role(self, obj: DigitalObject, role: str, group: str) -> None:
        self.calls.append(("assign_role", obj.identifier, role, group))
        self.roles.setdefault(obj.identifier, []).append(RoleAssociation(role=role, group=group))
