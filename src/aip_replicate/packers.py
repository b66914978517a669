# ABOUTME: Per-kind packers that turn repository objects into packages and back
# ABOUTME: Dispatches on object kind for pack, unpack and recursive size estimation
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from aip_replicate.context import ReplicationContext
from aip_replicate.exceptions import PackageFormatError
from aip_replicate.models import (
    OBJFILE,
    BagBitstream,
    Bitstream,
    DigitalObject,
    ObjectKind,
    ObjectProperties,
    XmlElement,
)
from aip_replicate.reader import PackageReader
from aip_replicate.roles import ROLES_XML, export_roles, ingest_roles
from aip_replicate.writer import PackageWriter

logger = logging.getLogger(__name__)

NO_RECURSE = "norecurse"

# These represent the persistent object state of each kind, in package order
ROOT_FIELDS = ("name",)
CONTAINER_FIELDS = (
    "name",
    "short_description",
    "introductory_text",
    "copyright_text",
    "side_bar_text",
)
COLLECTION_FIELDS = (
    "name",
    "short_description",
    "introductory_text",
    "provenance_description",
    "license",
    "copyright_text",
    "side_bar_text",
)


@dataclass
class UnpackOptions:
    """How package contents are merged into a live object.

    ``replace`` clears live metadata (and item payloads) before writing, so
    the object ends up holding exactly what the package holds. Otherwise
    package fields overwrite same-named live fields and everything else is
    kept.
    """

    replace: bool = False
    create_metadata_fields: bool = True


class Packer(Protocol):
    def pack(self, pack_dir: Path) -> Path: ...

    def unpack(self, archive: Path, options: UnpackOptions | None = None) -> None: ...

    def size(self, method: str | None = None) -> int: ...


def packer_for(ctx: ReplicationContext, obj: DigitalObject) -> Packer:
    """Select the packer for an object's kind."""
    match obj.kind:
        case ObjectKind.ROOT:
            return FieldPacker(ctx, obj, ROOT_FIELDS)
        case ObjectKind.CONTAINER:
            return FieldPacker(ctx, obj, CONTAINER_FIELDS)
        case ObjectKind.COLLECTION:
            return FieldPacker(ctx, obj, COLLECTION_FIELDS)
        case ObjectKind.ITEM:
            return ItemPacker(ctx, obj)
    raise ValueError(f"No packer for {obj.kind}")


def _object_properties(obj: DigitalObject) -> dict[str, list[str]]:
    props = ObjectProperties(
        object_type=obj.kind, object_id=obj.identifier, owner_id=obj.parent_identifier
    )
    return {OBJFILE: props.to_lines()}


def _write(
    ctx: ReplicationContext,
    obj: DigitalObject,
    pack_dir: Path,
    elements: list[XmlElement],
    bitstreams: list[BagBitstream] | None = None,
    documents: dict[str, str] | None = None,
) -> Path:
    writer = PackageWriter(
        pack_dir,
        ctx.config.archive_format,
        obj.logo,
        _object_properties(obj),
        elements,
        bitstreams=bitstreams,
        documents=documents,
        tag_files=ctx.config.tag_files(),
        digest_algorithm=ctx.config.digest_algorithm,
        retrieve=ctx.content.retrieve,
    )
    return writer.package()


def _open(ctx: ReplicationContext, obj: DigitalObject, archive: Path) -> PackageReader:
    reader = PackageReader(
        archive,
        verify=ctx.config.verify_on_read,
        digest_algorithm=ctx.config.digest_algorithm,
    )
    try:
        props = reader.read_properties()
        if props.object_type != obj.kind:
            raise PackageFormatError(
                f"Package {archive.name} holds a {props.object_type.value}, "
                f"not a {obj.kind.value}"
            )
    except Exception:
        reader.clean()
        raise
    return reader


def _accepts(ctx: ReplicationContext, name: str | None, options: UnpackOptions) -> bool:
    if not name:
        logger.warning("Ignoring metadata value without a name")
        return False
    if not options.create_metadata_fields and not ctx.content.has_field(name):
        logger.warning(f"Skipping unregistered metadata field {name}")
        return False
    return True


def _subtree_size(ctx: ReplicationContext, obj: DigitalObject, method: str | None) -> int:
    size = obj.logo.size if obj.logo is not None else 0
    if method != NO_RECURSE:
        for child in ctx.content.children(obj):
            size += packer_for(ctx, child).size(method)
    return size


class FieldPacker:
    """Packs sites, containers and collections: fixed fields, logo and roles."""

    def __init__(self, ctx: ReplicationContext, obj: DigitalObject, fields: tuple[str, ...]):
        self.ctx = ctx
        self.obj = obj
        self.fields = fields

    def pack(self, pack_dir: Path) -> Path:
        elements = [XmlElement.named(f, self.obj.get_metadata(f)) for f in self.fields]

        documents = {}
        if self.ctx.include_roles and self.ctx.roles is not None:
            documents[ROLES_XML] = export_roles(self.ctx.roles, self.obj).to_xml()

        # Children are packaged separately and point back here via ownerId
        return _write(self.ctx, self.obj, pack_dir, elements, documents=documents)

    def unpack(self, archive: Path, options: UnpackOptions | None = None) -> None:
        options = options or UnpackOptions()
        content = self.ctx.content

        with _open(self.ctx, self.obj, archive) as reader:
            elements = reader.read_metadata()
            if options.replace:
                content.clear_metadata(self.obj)
            for element in elements:
                if _accepts(self.ctx, element.name, options):
                    content.set_metadata(self.obj, element.name, element.body)

            logo = reader.find_logo()
            if logo is not None:
                with open(logo, "rb") as stream:
                    content.set_logo(self.obj, stream)

            roles_xml = reader.find_document(ROLES_XML)
            if roles_xml is not None and self.ctx.roles is not None:
                ingest_roles(self.ctx.roles, self.obj, roles_xml, keep_existing=True)

            content.update(self.obj)

        logger.info(f"Unpacked {self.obj.kind.value} {self.obj.identifier} from {archive.name}")

    def size(self, method: str | None = None) -> int:
        return _subtree_size(self.ctx, self.obj, method)


class ItemPacker:
    """Packs items: repeatable metadata values and bundled payloads."""

    def __init__(self, ctx: ReplicationContext, obj: DigitalObject):
        self.ctx = ctx
        self.obj = obj

    def pack(self, pack_dir: Path) -> Path:
        elements = [XmlElement.named(name, value) for name, value in self.obj.metadata]
        bitstreams = [
            BagBitstream(bundle=b.bundle, bitstream=b, xml=bitstream_xml(b))
            for b in self.obj.bitstreams
        ]
        return _write(self.ctx, self.obj, pack_dir, elements, bitstreams=bitstreams)

    def unpack(self, archive: Path, options: UnpackOptions | None = None) -> None:
        options = options or UnpackOptions()
        content = self.ctx.content

        with _open(self.ctx, self.obj, archive) as reader:
            elements = reader.read_metadata()
            if options.replace:
                content.clear_metadata(self.obj)
                content.remove_bitstreams(self.obj)

            written: set[str] = set()
            for element in elements:
                if not _accepts(self.ctx, element.name, options):
                    continue
                # First value of a name replaces the live values, the rest append
                if element.name in written:
                    content.add_metadata(self.obj, element.name, element.body)
                else:
                    content.set_metadata(self.obj, element.name, element.body)
                    written.add(element.name)

            # Unnamed payloads cannot be matched to live ones and are always added
            present = {(b.bundle, b.name) for b in self.obj.bitstreams if b.name is not None}
            for bundle, path, xml in reader.bitstreams():
                info = {el.name: el.body for el in xml}
                if (bundle, info.get("name")) in present:
                    continue
                with open(path, "rb") as stream:
                    content.add_bitstream(
                        self.obj,
                        bundle,
                        stream,
                        name=info.get("name"),
                        description=info.get("description"),
                        mimetype=info.get("mimetype"),
                    )

            logo = reader.find_logo()
            if logo is not None:
                with open(logo, "rb") as stream:
                    content.set_logo(self.obj, stream)

            content.update(self.obj)

        logger.info(f"Unpacked item {self.obj.identifier} from {archive.name}")

    def size(self, method: str | None = None) -> int:
        return _subtree_size(self.ctx, self.obj, method) + sum(
            b.size for b in self.obj.bitstreams
        )


def bitstream_xml(bitstream: Bitstream) -> list[XmlElement]:
    """Per-payload metadata written beside each bitstream."""
    return [
        XmlElement.named("name", bitstream.name),
        XmlElement.named("description", bitstream.description),
        XmlElement.named("source", bitstream.source),
        XmlElement.named("mimetype", bitstream.mimetype),
        XmlElement.named("size", str(bitstream.size)),
    ]
