# ABOUTME: Replication tasks that transmit, verify, fetch and remove object packages
# ABOUTME: Combines packers with the replica manager and reports a status per object
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from aip_replicate.context import ReplicationContext
from aip_replicate.exceptions import ConfigError, ReplicateError
from aip_replicate.models import DigitalObject
from aip_replicate.packers import NO_RECURSE, packer_for
from aip_replicate.replica import ReplicaManager

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


@dataclass
class TaskResult:
    identifier: str
    status: TaskStatus
    message: str

    @property
    def ok(self) -> bool:
        return self.status == TaskStatus.SUCCESS


def _replicas(ctx: ReplicationContext) -> ReplicaManager:
    if ctx.replicas is None:
        raise ConfigError(
            "No replica store configured",
            recovery_hint="Pass a ReplicaManager in the ReplicationContext",
        )
    return ctx.replicas


def transmit(ctx: ReplicationContext, obj: DigitalObject) -> TaskResult:
    """Package one object and upload it to the replica store.

    The local archive is removed afterwards. If the upload fails, whatever
    the store holds under the object's key is deleted before the error
    propagates.
    """
    replicas = _replicas(ctx)
    archive = packer_for(ctx, obj).pack(replicas.stage(obj.identifier))
    try:
        message = f"Created AIP: '{archive.name}' size: {archive.stat().st_size}"
        try:
            replicas.transfer(archive)
        except Exception:
            logger.error(f"Transfer of {archive.name} failed, removing partial replica")
            replicas.remove(obj.identifier)
            raise
    finally:
        archive.unlink(missing_ok=True)

    logger.info(message)
    return TaskResult(obj.identifier, TaskStatus.SUCCESS, message)


def transmit_tree(ctx: ReplicationContext, obj: DigitalObject) -> list[TaskResult]:
    """Transmit an object and its whole subtree, parents before children.

    Failures are recorded per object; a failed object's descendants are
    still transmitted since every package stands on its own.
    """
    results = []
    pending = [obj]
    while pending:
        current = pending.pop(0)
        try:
            results.append(transmit(ctx, current))
        except (ReplicateError, OSError) as e:
            logger.error(f"Failed to transmit {current.identifier}: {e}")
            results.append(TaskResult(current.identifier, TaskStatus.FAIL, str(e)))
        pending.extend(ctx.content.children(current))
    return results


def verify(ctx: ReplicationContext, obj: DigitalObject) -> TaskResult:
    """Check that a package for the object is present in the replica store."""
    found = _replicas(ctx).exists(obj.identifier)
    message = f"AIP for object: {obj.identifier} found: {str(found).lower()}"
    return TaskResult(obj.identifier, TaskStatus.SUCCESS if found else TaskStatus.FAIL, message)


def fetch(ctx: ReplicationContext, identifier: str) -> tuple[TaskResult, Path | None]:
    """Download an object's package into the staging area."""
    archive = _replicas(ctx).fetch(identifier)
    if archive is None:
        return TaskResult(identifier, TaskStatus.FAIL, f"No AIP stored for {identifier}"), None
    message = f"Fetched AIP: '{archive.name}' size: {archive.stat().st_size}"
    return TaskResult(identifier, TaskStatus.SUCCESS, message), archive


def remove(ctx: ReplicationContext, identifier: str) -> TaskResult:
    """Delete an object's package from the replica store."""
    removed = _replicas(ctx).remove(identifier)
    status = TaskStatus.SUCCESS if removed else TaskStatus.FAIL
    return TaskResult(identifier, status, f"AIP for object: {identifier} removed: {str(removed).lower()}")


def estimate_size(ctx: ReplicationContext, obj: DigitalObject, recursive: bool = True) -> int:
    """Payload bytes an object (and by default its subtree) would package."""
    return packer_for(ctx, obj).size(None if recursive else NO_RECURSE)
