# ABOUTME: Data models for repository objects, payloads and package properties
# ABOUTME: Provides the object kinds, metadata elements and object.properties parsing
import logging
from dataclasses import dataclass, field
from enum import Enum

from aip_replicate.exceptions import PackageFormatError

logger = logging.getLogger(__name__)

# Package layout
BAG_AIP = "AIP"
OBJFILE = "object.properties"
BAG_TYPE = "bagType"
OBJECT_TYPE = "objectType"
OBJECT_ID = "objectId"
OWNER_ID = "ownerId"
PROPERTIES_DELIMITER = "  "
XML_NAME_KEY = "name"
BITSTREAM_PREFIX = "bitstream_"


class ObjectKind(str, Enum):
    """Repository object kinds, valued by their object-type tag."""

    ROOT = "site"
    CONTAINER = "community"
    COLLECTION = "collection"
    ITEM = "item"

    @classmethod
    def from_tag(cls, tag: str) -> "ObjectKind":
        try:
            return cls(tag)
        except ValueError:
            raise PackageFormatError(f"Unknown object type: {tag}") from None


@dataclass
class Bitstream:
    """A binary payload belonging to an object, or an object's logo."""

    id: str
    content: bytes | None = None
    name: str | None = None
    bundle: str = "ORIGINAL"
    mimetype: str = "application/octet-stream"
    extensions: list[str] = field(default_factory=list)
    description: str | None = None
    source: str | None = None
    size: int | None = None

    def __post_init__(self):
        if self.size is None:
            self.size = len(self.content) if self.content is not None else 0

    def filename(self) -> str:
        """Payload filename: ``bitstream_<id>`` plus the first known extension."""
        name = f"{BITSTREAM_PREFIX}{self.id}"
        if self.extensions:
            name += f".{self.extensions[0]}"
        return name


@dataclass
class DigitalObject:
    """Snapshot of one node of the repository tree."""

    identifier: str
    kind: ObjectKind
    parent_identifier: str | None = None
    children: list[str] = field(default_factory=list)
    metadata: list[tuple[str, str]] = field(default_factory=list)
    bitstreams: list[Bitstream] = field(default_factory=list)
    logo: Bitstream | None = None

    def get_metadata(self, name: str) -> str | None:
        """First value recorded for ``name``, or None."""
        for key, value in self.metadata:
            if key == name:
                return value
        return None

    def set_metadata(self, name: str, value: str) -> None:
        """Replace every value of ``name`` with a single value."""
        self.metadata = [(k, v) for k, v in self.metadata if k != name]
        self.metadata.append((name, value))


@dataclass
class XmlElement:
    """One ``<value>`` element of a metadata document."""

    body: str | None
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str | None:
        return self.attributes.get(XML_NAME_KEY)

    @classmethod
    def named(cls, name: str, body: str | None) -> "XmlElement":
        return cls(body=body, attributes={XML_NAME_KEY: name})


@dataclass
class BagBitstream:
    """A payload scheduled for writing, with the metadata describing it."""

    bundle: str
    bitstream: Bitstream
    xml: list[XmlElement] = field(default_factory=list)
    fetch_url: str | None = None


@dataclass
class ObjectProperties:
    """Contents of a package's object.properties file."""

    object_type: ObjectKind
    object_id: str
    owner_id: str | None = None
    bag_type: str = BAG_AIP

    def to_lines(self) -> list[str]:
        lines = [
            f"{BAG_TYPE}{PROPERTIES_DELIMITER}{self.bag_type}",
            f"{OBJECT_TYPE}{PROPERTIES_DELIMITER}{self.object_type.value}",
            f"{OBJECT_ID}{PROPERTIES_DELIMITER}{self.object_id}",
        ]
        if self.owner_id:
            lines.append(f"{OWNER_ID}{PROPERTIES_DELIMITER}{self.owner_id}")
        return lines

    @classmethod
    def from_lines(cls, lines: list[str]) -> "ObjectProperties":
        """Parse ``KEY  VALUE`` lines.

        Raises:
            PackageFormatError: If a line is malformed or a required key is missing
        """
        values: dict[str, str] = {}
        for line in lines:
            if not line.strip():
                continue
            key, sep, value = line.partition(PROPERTIES_DELIMITER)
            if not sep:
                raise PackageFormatError(f"Malformed object property line: {line!r}")
            values[key] = value.strip()

        missing = [k for k in (OBJECT_TYPE, OBJECT_ID) if k not in values]
        if missing:
            raise PackageFormatError(f"object.properties is missing {', '.join(missing)}")

        return cls(
            object_type=ObjectKind.from_tag(values[OBJECT_TYPE]),
            object_id=values[OBJECT_ID],
            owner_id=values.get(OWNER_ID),
            bag_type=values.get(BAG_TYPE, BAG_AIP),
        )
