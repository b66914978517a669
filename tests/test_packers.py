# ABOUTME: Tests for per-kind packers
# ABOUTME: Validates pack contents, unpack writes into the host and size estimation

import zipfile

import pytest

from aip_replicate.context import ReplicationContext
from aip_replicate.exceptions import PackageFormatError, UnsupportedOperationError
from aip_replicate.models import Bitstream, DigitalObject, ObjectKind
from aip_replicate.packers import (
    COLLECTION_FIELDS,
    CONTAINER_FIELDS,
    NO_RECURSE,
    FieldPacker,
    ItemPacker,
    UnpackOptions,
    packer_for,
)
from aip_replicate.reader import PackageReader
from aip_replicate.repository import InMemoryRepository
from aip_replicate.roles import export_roles

from conftest import COLLECTION_ID, CONTAINER_ID, ITEM_ID, SITE_ID


def pack(ctx, obj):
    return packer_for(ctx, obj).pack(ctx.replicas.stage(obj.identifier))


class TestPackerDispatch:
    """Test packer selection by object kind."""

    def test_each_kind_has_a_packer(self, ctx, tree):
        """Test dispatch returns the packer with the kind's field set."""
        assert isinstance(packer_for(ctx, tree["item"]), ItemPacker)
        container = packer_for(ctx, tree["container"])
        assert isinstance(container, FieldPacker)
        assert container.fields == CONTAINER_FIELDS
        assert packer_for(ctx, tree["collection"]).fields == COLLECTION_FIELDS
        assert packer_for(ctx, tree["site"]).fields == ("name",)


class TestFieldPacker:
    """Test packing of sites, containers and collections."""

    def test_container_package_properties(self, ctx, tree):
        """Test object.properties names the container and its owner."""
        archive = pack(ctx, tree["container"])

        with PackageReader(archive) as reader:
            props = reader.read_properties()

        assert archive.name == "123456789-1.zip"
        assert props.object_type == ObjectKind.CONTAINER
        assert props.object_id == CONTAINER_ID
        assert props.owner_id == SITE_ID

    def test_container_round_trip_writes_only_present_fields(self, ctx, tree, repo):
        """Test a container with two fields packs and unpacks exactly two values."""
        archive = pack(ctx, tree["container"])

        with PackageReader(archive) as reader:
            elements = reader.read_metadata()
        assert [(e.name, e.body) for e in elements] == [
            ("name", "Physics"),
            ("short_description", "Dept. of Physics"),
        ]

        repo.calls.clear()
        target = DigitalObject(identifier=CONTAINER_ID, kind=ObjectKind.CONTAINER)
        packer_for(ctx, target).unpack(archive)

        assert repo.calls_named("set_metadata") == [
            ("set_metadata", CONTAINER_ID, "name", "Physics"),
            ("set_metadata", CONTAINER_ID, "short_description", "Dept. of Physics"),
        ]
        assert repo.calls_named("update") == [("update", CONTAINER_ID)]
        assert repo.calls_named("set_logo") == []

    def test_site_without_children_packages(self, ctx, repo):
        """Test a site with no children packs its name only."""
        site = repo.add(
            DigitalObject(identifier=SITE_ID, kind=ObjectKind.ROOT, metadata=[("name", "Lonely")])
        )

        archive = pack(ctx, site)

        with PackageReader(archive, verify=True) as reader:
            assert [(e.name, e.body) for e in reader.read_metadata()] == [("name", "Lonely")]

    def test_collection_logo_and_tag_files(self, ctx, tree):
        """Test collection packages carry the logo and configured tag files."""
        archive = pack(ctx, tree["collection"])

        names = zipfile.ZipFile(archive).namelist()
        assert "123456789-2/data/logo" in names
        assert "123456789-2/other-info.txt" in names
        with PackageReader(archive) as reader:
            assert reader.find_logo().read_bytes() == b"\x89PNG logo bytes"
            bag_info = (reader.bag_dir / "bag-info.txt").read_text()
        assert "Source-Organization: org.example.replicate" in bag_info

    def test_collection_unpack_sets_logo_and_updates(self, ctx, tree, repo):
        """Test unpack writes fields, the logo and a final update."""
        archive = pack(ctx, tree["collection"])
        target = DigitalObject(identifier=COLLECTION_ID, kind=ObjectKind.COLLECTION)
        repo.calls.clear()

        packer_for(ctx, target).unpack(archive)

        assert target.get_metadata("license") == "CC-BY-4.0"
        assert target.get_metadata("provenance_description") == "Migrated in 2019"
        assert target.logo.content == b"\x89PNG logo bytes"
        assert repo.calls[-1] == ("update", COLLECTION_ID)
        assert ("set_logo", COLLECTION_ID) in repo.calls

    def test_replace_clears_metadata_first(self, ctx, tree, repo):
        """Test replace mode drops live fields the package does not hold."""
        archive = pack(ctx, tree["container"])
        target = tree["container"]
        target.metadata.append(("side_bar_text", "stale"))
        repo.calls.clear()

        packer_for(ctx, target).unpack(archive, UnpackOptions(replace=True))

        assert repo.calls[0] == ("clear_metadata", CONTAINER_ID)
        assert target.get_metadata("side_bar_text") is None
        assert target.get_metadata("name") == "Physics"

    def test_merge_keeps_unpackaged_fields(self, ctx, tree, repo):
        """Test non-replace unpack keeps live fields the package does not hold."""
        archive = pack(ctx, tree["container"])
        target = tree["container"]
        target.metadata.append(("side_bar_text", "live"))

        packer_for(ctx, target).unpack(archive)

        assert target.get_metadata("side_bar_text") == "live"
        assert repo.calls_named("clear_metadata") == []

    def test_roles_packaged_and_ingested(self, ctx, roles, tree):
        """Test collection role graphs travel with the package."""
        archive = pack(ctx, tree["collection"])
        with PackageReader(archive) as reader:
            assert reader.find_document("roles.xml") is not None

        fresh = InMemoryRepository()
        fresh_ctx = ReplicationContext(config=ctx.config, content=fresh, roles=fresh)
        target = fresh.add(DigitalObject(identifier=COLLECTION_ID, kind=ObjectKind.COLLECTION))

        packer_for(fresh_ctx, target).unpack(archive)

        assert fresh.find_person("admin@example.org") is not None
        assert fresh.find_group("COLLECTION_2_ADMIN").members == ["admin@example.org"]
        assert export_roles(fresh, target).associations == roles.roles_for(tree["collection"])

    def test_roles_skipped_when_disabled(self, ctx, roles, tree):
        """Test include_roles=False leaves roles.xml out."""
        ctx.include_roles = False
        archive = pack(ctx, tree["collection"])

        with PackageReader(archive) as reader:
            assert reader.find_document("roles.xml") is None

    def test_unregistered_fields_skipped(self, ctx, tree, repo):
        """Test create_metadata_fields=False drops fields the host does not know."""
        archive = pack(ctx, tree["collection"])
        repo.registry = {"name"}
        target = DigitalObject(identifier=COLLECTION_ID, kind=ObjectKind.COLLECTION)
        repo.calls.clear()

        packer_for(ctx, target).unpack(archive, UnpackOptions(create_metadata_fields=False))

        assert repo.calls_named("set_metadata") == [("set_metadata", COLLECTION_ID, "name", "Theses")]

    def test_unpack_kind_mismatch(self, ctx, tree):
        """Test unpacking a container package into a collection fails."""
        archive = pack(ctx, tree["container"])
        target = DigitalObject(identifier=CONTAINER_ID, kind=ObjectKind.COLLECTION)

        with pytest.raises(PackageFormatError):
            packer_for(ctx, target).unpack(archive)


class TestItemPacker:
    """Test packing of items."""

    def test_item_package_contents(self, ctx, tree):
        """Test item packages hold repeated values and bundled payloads."""
        archive = pack(ctx, tree["item"])

        with PackageReader(archive, verify=True) as reader:
            elements = [(e.name, e.body) for e in reader.read_metadata()]
            payloads = {
                (bundle, path.name): {e.name: e.body for e in xml}
                for bundle, path, xml in reader.bitstreams()
            }
            pdf = reader.find_bitstream("ORIGINAL").read_bytes()

        assert elements == [
            ("dc.title", "On the Motion of Bodies"),
            ("dc.contributor.author", "Noether, Emmy"),
            ("dc.contributor.author", "Curie, Marie"),
        ]
        assert pdf == b"%PDF-1.4 thesis body"
        assert payloads[("ORIGINAL", "bitstream_101.pdf")] == {
            "name": "thesis.pdf",
            "description": "Full text",
            "mimetype": "application/pdf",
            "size": "20",
        }
        assert payloads[("LICENSE", "bitstream_102.txt")]["name"] == "license.txt"

    def test_item_roles_not_packaged(self, ctx, roles, tree):
        """Test items never carry a roles document."""
        archive = pack(ctx, tree["item"])

        with PackageReader(archive) as reader:
            assert reader.find_document("roles.xml") is None

    def test_item_unpack_into_new_object(self, ctx, tree, repo):
        """Test repeated values and payloads are recreated."""
        archive = pack(ctx, tree["item"])
        target = DigitalObject(identifier=ITEM_ID, kind=ObjectKind.ITEM)
        repo.calls.clear()

        packer_for(ctx, target).unpack(archive)

        assert target.metadata == tree["item"].metadata
        assert repo.calls_named("add_metadata") == [
            ("add_metadata", ITEM_ID, "dc.contributor.author", "Curie, Marie")
        ]
        added = {(b.bundle, b.name): b for b in target.bitstreams}
        assert set(added) == {("ORIGINAL", "thesis.pdf"), ("LICENSE", "license.txt")}
        assert added[("ORIGINAL", "thesis.pdf")].content == b"%PDF-1.4 thesis body"
        assert added[("ORIGINAL", "thesis.pdf")].mimetype == "application/pdf"
        assert repo.calls[-1] == ("update", ITEM_ID)

    def test_item_unpack_twice_is_stable(self, ctx, tree, repo):
        """Test a second unpack neither duplicates values nor payloads."""
        archive = pack(ctx, tree["item"])
        target = DigitalObject(identifier=ITEM_ID, kind=ObjectKind.ITEM)

        packer_for(ctx, target).unpack(archive)
        packer_for(ctx, target).unpack(archive)

        assert target.metadata == tree["item"].metadata
        assert len(target.bitstreams) == 2


    def test_unnamed_payloads_not_collapsed(self, ctx, repo):
        """Test an unnamed live payload does not hide unnamed payloads in the package."""
        packaged = repo.add(
            DigitalObject(
                identifier=ITEM_ID,
                kind=ObjectKind.ITEM,
                metadata=[("dc.title", "Scans")],
                bitstreams=[
                    Bitstream(id="201", content=b"page one"),
                    Bitstream(id="202", content=b"page two"),
                ],
            )
        )
        archive = pack(ctx, packaged)
        target = DigitalObject(
            identifier=ITEM_ID,
            kind=ObjectKind.ITEM,
            bitstreams=[Bitstream(id="5", content=b"live scan")],
        )

        packer_for(ctx, target).unpack(archive)

        assert sorted(b.content for b in target.bitstreams) == [b"live scan", b"page one", b"page two"]
    def test_item_replace_removes_payloads(self, ctx, tree, repo):
        """Test replace mode clears metadata and payloads before writing."""
        archive = pack(ctx, tree["item"])
        item = tree["item"]
        item.metadata.append(("dc.subject", "stale"))
        repo.calls.clear()

        packer_for(ctx, item).unpack(archive, UnpackOptions(replace=True))

        assert repo.calls[:2] == [("clear_metadata", ITEM_ID), ("remove_bitstreams", ITEM_ID)]
        assert all(name != "dc.subject" for name, _ in item.metadata)
        assert len(item.bitstreams) == 2


class TestSize:
    """Test recursive package size estimation."""

    def test_item_size_is_payload_bytes(self, ctx, tree):
        """Test item size sums its payloads."""
        assert packer_for(ctx, tree["item"]).size() == 20 + 12

    def test_collection_size_includes_logo_and_items(self, ctx, tree):
        """Test recursive size adds the logo and every descendant."""
        logo = len(b"\x89PNG logo bytes")
        assert packer_for(ctx, tree["collection"]).size() == logo + 32
        assert packer_for(ctx, tree["site"]).size() == logo + 32

    def test_norecurse_counts_own_content_only(self, ctx, tree):
        """Test norecurse ignores children."""
        logo = len(b"\x89PNG logo bytes")
        assert packer_for(ctx, tree["collection"]).size(NO_RECURSE) == logo
        assert packer_for(ctx, tree["site"]).size(NO_RECURSE) == 0

    def test_empty_container_size_is_zero(self, ctx, repo):
        """Test an object with no content and no children has size zero."""
        empty = repo.add(DigitalObject(identifier=CONTAINER_ID, kind=ObjectKind.CONTAINER))
        assert packer_for(ctx, empty).size() == 0


class TestUnsupportedRoles:
    """Test role export boundaries."""

    def test_item_roles_export_is_unsupported(self, repo, tree):
        """Test exporting roles for an item is rejected."""
        with pytest.raises(UnsupportedOperationError):
            export_roles(repo, tree["item"])
