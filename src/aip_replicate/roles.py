# ABOUTME: Role graph export and ingest for packages of sites, containers and collections
# ABOUTME: Pydantic models for groups, people and role associations plus their XML form
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from aip_replicate.exceptions import PackageFormatError, UnsupportedOperationError
from aip_replicate.models import DigitalObject, ObjectKind

if TYPE_CHECKING:
    from aip_replicate.repository import RoleService

logger = logging.getLogger(__name__)

ROLES_XML = "roles.xml"


class Person(BaseModel):
    """A repository account."""

    email: str
    id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    can_login: bool = True


class Group(BaseModel):
    """A named group of people and nested groups."""

    name: str
    id: str | None = None
    members: list[str] = Field(default_factory=list, description="Member emails")
    member_groups: list[str] = Field(default_factory=list, description="Nested group names")


class RoleAssociation(BaseModel):
    """Ties a group to one administrative or workflow role of an object."""

    role: str
    group: str


class RoleGraph(BaseModel):
    """Groups, people and role associations scoped to one object."""

    scope: str | None = None
    groups: list[Group] = Field(default_factory=list)
    people: list[Person] = Field(default_factory=list)
    associations: list[RoleAssociation] = Field(default_factory=list)

    def to_xml(self) -> str:
        root = ET.Element("Roles")
        if self.scope:
            root.set("scope", self.scope)

        groups_el = ET.SubElement(root, "Groups")
        for group in self.groups:
            group_el = ET.SubElement(groups_el, "Group", Name=group.name)
            if group.id:
                group_el.set("ID", group.id)
            members_el = ET.SubElement(group_el, "Members")
            for email in group.members:
                ET.SubElement(members_el, "Member", Email=email)
            nested_el = ET.SubElement(group_el, "MemberGroups")
            for name in group.member_groups:
                ET.SubElement(nested_el, "MemberGroup", Name=name)

        people_el = ET.SubElement(root, "People")
        for person in self.people:
            person_el = ET.SubElement(people_el, "Person")
            if person.id:
                person_el.set("ID", person.id)
            ET.SubElement(person_el, "Email").text = person.email
            if person.first_name:
                ET.SubElement(person_el, "FirstName").text = person.first_name
            if person.last_name:
                ET.SubElement(person_el, "LastName").text = person.last_name
            if person.can_login:
                ET.SubElement(person_el, "CanLogin")

        assoc_el = ET.SubElement(root, "Associations")
        for association in self.associations:
            ET.SubElement(assoc_el, "Association", Role=association.role, Group=association.group)

        return ET.tostring(root, encoding="utf-8", xml_declaration=True).decode("utf-8")

    @classmethod
    def from_xml(cls, text: str) -> "RoleGraph":
        """Parse a document produced by ``to_xml``.

        Raises:
            PackageFormatError: If the document is not a well-formed roles document
        """
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise PackageFormatError(f"Malformed roles document: {e}") from e
        if root.tag != "Roles":
            raise PackageFormatError(f"Unexpected roles root element <{root.tag}>")

        groups = [
            Group(
                name=el.get("Name", ""),
                id=el.get("ID"),
                members=[m.get("Email", "") for m in el.iterfind("Members/Member")],
                member_groups=[g.get("Name", "") for g in el.iterfind("MemberGroups/MemberGroup")],
            )
            for el in root.iterfind("Groups/Group")
        ]
        people = [
            Person(
                email=el.findtext("Email", ""),
                id=el.get("ID"),
                first_name=el.findtext("FirstName"),
                last_name=el.findtext("LastName"),
                can_login=el.find("CanLogin") is not None,
            )
            for el in root.iterfind("People/Person")
        ]
        associations = [
            RoleAssociation(role=el.get("Role", ""), group=el.get("Group", ""))
            for el in root.iterfind("Associations/Association")
        ]
        return cls(scope=root.get("scope"), groups=groups, people=people, associations=associations)


def export_roles(roles: "RoleService", obj: DigitalObject) -> RoleGraph:
    """Collect the role graph of a site, container or collection.

    A site exports every group and person. Containers and collections export
    the groups bound to their roles, the groups nested in those, and the
    people who are members of any of them.

    Raises:
        UnsupportedOperationError: If called for an item
    """
    match obj.kind:
        case ObjectKind.ROOT:
            return RoleGraph(
                scope=obj.identifier,
                groups=roles.all_groups(),
                people=roles.all_people(),
            )
        case ObjectKind.CONTAINER | ObjectKind.COLLECTION:
            associations = roles.roles_for(obj)
            groups: dict[str, Group] = {}
            pending = [a.group for a in associations]
            while pending:
                name = pending.pop()
                if name in groups:
                    continue
                group = roles.find_group(name)
                if group is None:
                    logger.warning(f"Role group {name} of {obj.identifier} no longer exists")
                    continue
                groups[name] = group
                pending.extend(group.member_groups)

            people: dict[str, Person] = {}
            for group in groups.values():
                for email in group.members:
                    person = roles.find_person(email)
                    if person is not None:
                        people[email] = person

            return RoleGraph(
                scope=obj.identifier,
                groups=list(groups.values()),
                people=list(people.values()),
                associations=associations,
            )
        case _:
            raise UnsupportedOperationError(f"Roles are not packaged for {obj.kind.value} objects")


def ingest_roles(
    roles: "RoleService", obj: DigitalObject, path: Path, keep_existing: bool = True
) -> dict[str, int]:
    """Load a roles document into the role service.

    With ``keep_existing`` (the mode packages are always restored with)
    existing people are left untouched and existing groups only gain the
    members named in the document.

    Returns:
        Counts of people, groups and associations written
    """
    graph = RoleGraph.from_xml(path.read_text(encoding="utf-8"))
    counts = {"people": 0, "groups": 0, "associations": 0}

    for person in graph.people:
        if keep_existing and roles.find_person(person.email) is not None:
            continue
        roles.save_person(person)
        counts["people"] += 1

    for group in graph.groups:
        existing = roles.find_group(group.name)
        if existing is not None and keep_existing:
            members = existing.members + [m for m in group.members if m not in existing.members]
            nested = existing.member_groups + [
                g for g in group.member_groups if g not in existing.member_groups
            ]
            if members == existing.members and nested == existing.member_groups:
                continue
            group = existing.model_copy(update={"members": members, "member_groups": nested})
        roles.save_group(group)
        counts["groups"] += 1

    current = roles.roles_for(obj)
    for association in graph.associations:
        if association in current:
            continue
        roles.assign_role(obj, association.role, association.group)
        counts["associations"] += 1

    logger.info(
        f"Ingested roles for {obj.identifier}: {counts['people']} people, "
        f"{counts['groups']} groups, {counts['associations']} associations"
    )
    return counts
