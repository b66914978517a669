# ABOUTME: Pytest fixtures for aip-replicate tests
# ABOUTME: Provides config, in-memory host repository, local replica store and a sample tree

import pytest

from aip_replicate.config import ReplicateConfig
from aip_replicate.context import ReplicationContext
from aip_replicate.models import Bitstream, DigitalObject, ObjectKind
from aip_replicate.replica import LocalReplicaStore, ReplicaManager
from aip_replicate.repository import InMemoryRepository
from aip_replicate.roles import Group, Person, RoleAssociation

SITE_ID = "123456789/0"
CONTAINER_ID = "123456789/1"
COLLECTION_ID = "123456789/2"
ITEM_ID = "123456789/3"


@pytest.fixture
def config(tmp_path):
    """Create test configuration with staging under tmp_path."""
    return ReplicateConfig(
        staging_dir=str(tmp_path / "staging"),
        archive_format="zip",
        store_group="aip_store",
        tag_fields={
            "bag-info.source-organization": "org.example.replicate",
            "other-info.misc": "replicate-test",
        },
    )


@pytest.fixture
def repo():
    """Create empty in-memory host repository."""
    return InMemoryRepository()


@pytest.fixture
def store(tmp_path):
    """Create local replica store."""
    return LocalReplicaStore(tmp_path / "replicas")


@pytest.fixture
def ctx(config, repo, store):
    """Create replication context wired to the in-memory host."""
    return ReplicationContext(
        config=config,
        content=repo,
        roles=repo,
        replicas=ReplicaManager(config, store),
    )


@pytest.fixture
def tree(repo):
    """Populate the repository with site -> container -> collection -> item.

    Returns:
        Dictionary of the created objects by kind
    """
    site = repo.add(
        DigitalObject(identifier=SITE_ID, kind=ObjectKind.ROOT, metadata=[("name", "Test Repository")])
    )
    container = repo.add(
        DigitalObject(
            identifier=CONTAINER_ID,
            kind=ObjectKind.CONTAINER,
            parent_identifier=SITE_ID,
            metadata=[("name", "Physics"), ("short_description", "Dept. of Physics")],
        )
    )
    collection = repo.add(
        DigitalObject(
            identifier=COLLECTION_ID,
            kind=ObjectKind.COLLECTION,
            parent_identifier=CONTAINER_ID,
            metadata=[
                ("name", "Theses"),
                ("license", "CC-BY-4.0"),
                ("provenance_description", "Migrated in 2019"),
            ],
            logo=Bitstream(id="90", content=b"\x89PNG logo bytes", mimetype="image/png", extensions=["png"]),
        )
    )
    item = repo.add(
        DigitalObject(
            identifier=ITEM_ID,
            kind=ObjectKind.ITEM,
            parent_identifier=COLLECTION_ID,
            metadata=[
                ("dc.title", "On the Motion of Bodies"),
                ("dc.contributor.author", "Noether, Emmy"),
                ("dc.contributor.author", "Curie, Marie"),
            ],
            bitstreams=[
                Bitstream(
                    id="101",
                    content=b"%PDF-1.4 thesis body",
                    name="thesis.pdf",
                    mimetype="application/pdf",
                    extensions=["pdf"],
                    description="Full text",
                ),
                Bitstream(
                    id="102",
                    content=b"license text",
                    name="license.txt",
                    bundle="LICENSE",
                    mimetype="text/plain",
                    extensions=["txt"],
                ),
            ],
        )
    )
    return {"site": site, "container": container, "collection": collection, "item": item}


@pytest.fixture
def roles(repo, tree):
    """Register a collection administrator group with one member."""
    repo.save_person(Person(email="admin@example.org", first_name="Ada", last_name="Admin"))
    repo.save_group(Group(name="COLLECTION_2_ADMIN", members=["admin@example.org"]))
    repo.roles[COLLECTION_ID] = [RoleAssociation(role="ADMIN", group="COLLECTION_2_ADMIN")]
    repo.calls.clear()
    return repo
