# ABOUTME: Explicit context threaded through packing, transfer and restore calls
# ABOUTME: Bundles configuration with the host services and the replica manager
from dataclasses import dataclass

from aip_replicate.config import ReplicateConfig
from aip_replicate.replica import ReplicaManager
from aip_replicate.repository import ContentService, RoleService


@dataclass
class ReplicationContext:
    """Everything a packer or task needs, passed explicitly instead of looked up."""

    config: ReplicateConfig
    content: ContentService
    roles: RoleService | None = None
    replicas: ReplicaManager | None = None
    include_roles: bool = True
