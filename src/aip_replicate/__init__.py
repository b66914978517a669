# ABOUTME: Public API exports for aip-replicate
# ABOUTME: Provides package writer/reader, packers, replica store client and restore reconciler

"""aip-replicate - Checksummed archival packages for repository replication."""

__version__ = "0.1.0"

# Core classes
from aip_replicate.config import ReplicateConfig, RestoreOptions
from aip_replicate.context import ReplicationContext
from aip_replicate.writer import PackageWriter
from aip_replicate.reader import PackageReader, verify_package
from aip_replicate.packers import UnpackOptions, packer_for

# Data model
from aip_replicate.models import (
    BagBitstream,
    Bitstream,
    DigitalObject,
    ObjectKind,
    ObjectProperties,
    XmlElement,
)
from aip_replicate.roles import RoleGraph, export_roles, ingest_roles

# Host and replica store
from aip_replicate.repository import ContentService, InMemoryRepository, RoleService
from aip_replicate.replica import (
    LocalReplicaStore,
    MinioReplicaStore,
    ReplicaManager,
    ReplicaStore,
    replica_key,
    safe_id,
)

# Operations
from aip_replicate.logging_config import setup_logging
from aip_replicate.tasks import estimate_size, transmit, transmit_tree, verify
from aip_replicate.restore import RestoreReconciler, RestoreReport, RestoreStatus

# Exceptions
from aip_replicate.exceptions import (
    ConfigError,
    MissingParentError,
    ObjectNotFoundError,
    PackageFormatError,
    PackageIOError,
    PreconditionError,
    ReplicaNotFoundError,
    ReplicateError,
    UnsupportedOperationError,
)

__all__ = [
    # Core
    "ReplicateConfig",
    "RestoreOptions",
    "ReplicationContext",
    "PackageWriter",
    "PackageReader",
    "verify_package",
    "UnpackOptions",
    "packer_for",
    # Data model
    "BagBitstream",
    "Bitstream",
    "DigitalObject",
    "ObjectKind",
    "ObjectProperties",
    "XmlElement",
    "RoleGraph",
    "export_roles",
    "ingest_roles",
    # Host and replica store
    "ContentService",
    "RoleService",
    "InMemoryRepository",
    "ReplicaStore",
    "ReplicaManager",
    "LocalReplicaStore",
    "MinioReplicaStore",
    "replica_key",
    "safe_id",
    # Operations
    "transmit",
    "transmit_tree",
    "verify",
    "estimate_size",
    "RestoreReconciler",
    "RestoreReport",
    "RestoreStatus",
    # Exceptions
    "ReplicateError",
    "ConfigError",
    "PreconditionError",
    "UnsupportedOperationError",
    "PackageIOError",
    "PackageFormatError",
    "MissingParentError",
    "ObjectNotFoundError",
    "ReplicaNotFoundError",
    # Version
    "setup_logging",
    "__version__",
]
