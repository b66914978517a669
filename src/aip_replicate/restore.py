# ABOUTME: Restore reconciler that applies stored packages back onto the live repository
# ABOUTME: Handles replace, restore and keep-existing modes, recursion and missing parents
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from aip_replicate.config import RestoreOptions
from aip_replicate.context import ReplicationContext
from aip_replicate.exceptions import (
    ConfigError,
    MissingParentError,
    PackageFormatError,
    ReplicaNotFoundError,
    ReplicateError,
)
from aip_replicate.models import DigitalObject, ObjectProperties
from aip_replicate.packers import UnpackOptions, packer_for
from aip_replicate.reader import PackageReader

logger = logging.getLogger(__name__)


class RestoreStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FATAL = "fatal"


class OutcomeStatus(str, Enum):
    RESTORED = "restored"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ObjectOutcome:
    identifier: str
    status: OutcomeStatus
    reason: str = ""


@dataclass
class RestoreReport:
    """Per-object outcomes of one restore run."""

    target: str
    outcomes: list[ObjectOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def status(self) -> RestoreStatus:
        if self.error is not None:
            return RestoreStatus.FATAL
        if self.failed:
            return RestoreStatus.PARTIAL_FAILURE
        return RestoreStatus.SUCCESS

    def _with(self, status: OutcomeStatus) -> list[ObjectOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def restored(self) -> list[ObjectOutcome]:
        return self._with(OutcomeStatus.RESTORED)

    @property
    def skipped(self) -> list[ObjectOutcome]:
        return self._with(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[ObjectOutcome]:
        return self._with(OutcomeStatus.FAILED)


@dataclass
class _Planned:
    properties: ObjectProperties
    archive: Path


class RestoreReconciler:
    """Restore one object, or a whole subtree, from the replica store.

    Packages are processed parent before children so owner references
    resolve before descendants check for them. Nothing is rolled back: when
    a run ends in partial failure the objects already restored keep their
    new state.
    """

    def __init__(self, ctx: ReplicationContext, options: RestoreOptions):
        if ctx.replicas is None:
            raise ConfigError(
                "No replica store configured",
                recovery_hint="Pass a ReplicaManager in the ReplicationContext",
            )
        self.ctx = ctx
        self.options = options

    def restore(self, identifier: str, candidates: list[str] | None = None) -> RestoreReport:
        """Restore ``identifier`` and, in recursive mode, its stored descendants.

        With explicit ``candidates`` every one of them is processed, including
        packages whose owner chain is broken by a package missing from the
        store; they are skipped or failed by the missing-parent policy.
        Without ``candidates`` the store group is searched and only packages
        linked to ``identifier`` through stored packages are processed.
        Unreadable packages found by that search are logged and ignored.

        Args:
            identifier: Object to restore
            candidates: Identifiers whose packages belong to the subtree;
                every package in the store group when omitted

        Returns:
            Report of what was restored, skipped and failed
        """
        report = RestoreReport(target=identifier)
        plan: dict[str, _Planned] = {}
        discovered = self.options.recursive_mode and candidates is None
        try:
            if not self.options.recursive_mode:
                candidates = [identifier]
            elif candidates is None:
                candidates = self.ctx.replicas.identifiers()
            if identifier not in candidates:
                candidates = [identifier, *candidates]

            for candidate in candidates:
                try:
                    plan[candidate] = self._plan(candidate)
                except PackageFormatError as e:
                    if not discovered or candidate == identifier:
                        raise
                    logger.warning(f"Ignoring unreadable package for {candidate}: {e}")

            for current in self._order(identifier, plan, include_unreached=not discovered):
                self._process(current, plan, report)
        except (PackageFormatError, ReplicaNotFoundError) as e:
            logger.error(f"Restore of {identifier} aborted: {e}")
            report.error = str(e)
        finally:
            for planned in plan.values():
                planned.archive.unlink(missing_ok=True)

        logger.info(
            f"Restore of {identifier} finished with {report.status.value}: "
            f"{len(report.restored)} restored, {len(report.skipped)} skipped, "
            f"{len(report.failed)} failed"
        )
        return report

    def _plan(self, identifier: str) -> _Planned:
        archive = self.ctx.replicas.fetch(identifier)
        if archive is None:
            raise ReplicaNotFoundError(self.ctx.replicas.group, self.ctx.replicas.key_for(identifier))
        try:
            with PackageReader(archive, digest_algorithm=self.ctx.config.digest_algorithm) as reader:
                properties = reader.read_properties()
            if properties.object_id != identifier:
                raise PackageFormatError(
                    f"Package stored for {identifier} describes {properties.object_id}"
                )
        except Exception:
            archive.unlink(missing_ok=True)
            raise
        return _Planned(properties, archive)

    def _order(
        self, identifier: str, plan: dict[str, _Planned], include_unreached: bool
    ) -> list[str]:
        """Planned identifiers, each owner before the packages it owns.

        Packages reachable from ``identifier`` come first. With
        ``include_unreached`` the remaining planned packages follow, each
        broken branch walked from its topmost stored package.
        """
        children: dict[str, list[str]] = {}
        for candidate, planned in plan.items():
            owner = planned.properties.owner_id
            if owner is not None and candidate != identifier:
                children.setdefault(owner, []).append(candidate)

        ordered = _walk([identifier], children)
        if include_unreached:
            rest = [c for c in plan if c not in ordered]
            roots = [c for c in rest if plan[c].properties.owner_id not in rest]
            ordered += [c for c in _walk(roots, children) if c not in ordered]
            # Owner cycles have no topmost package
            ordered += [c for c in rest if c not in ordered]
        else:
            unreached = len(plan) - len(ordered)
            if unreached:
                logger.info(
                    f"{unreached} stored packages are not linked to {identifier} and were not restored"
                )
        return ordered

    def _process(self, identifier: str, plan: dict[str, _Planned], report: RestoreReport) -> None:
        planned = plan[identifier]
        owner = planned.properties.owner_id

        failed_ids = {o.identifier for o in report.failed}
        if owner in failed_ids:
            report.outcomes.append(
                ObjectOutcome(identifier, OutcomeStatus.FAILED, f"parent {owner} failed")
            )
            return

        content = self.ctx.content
        if owner is not None and not content.exists(owner):
            if self.options.skip_if_parent_missing:
                logger.warning(f"Skipping {identifier}: parent {owner} does not exist")
                report.outcomes.append(
                    ObjectOutcome(identifier, OutcomeStatus.SKIPPED, f"parent {owner} missing")
                )
            else:
                error = MissingParentError(identifier, owner)
                logger.error(str(error))
                report.outcomes.append(ObjectOutcome(identifier, OutcomeStatus.FAILED, error.message))
            return

        live = content.find(identifier)
        if live is not None and self.options.restore_mode:
            logger.info(f"Skipping {identifier}: already exists")
            report.outcomes.append(
                ObjectOutcome(identifier, OutcomeStatus.SKIPPED, "object already exists")
            )
            return

        try:
            self._apply(live, planned)
        except PackageFormatError:
            raise
        except (ReplicateError, OSError) as e:
            logger.error(f"Failed to restore {identifier}: {e}")
            report.outcomes.append(ObjectOutcome(identifier, OutcomeStatus.FAILED, str(e)))
            return

        report.outcomes.append(ObjectOutcome(identifier, OutcomeStatus.RESTORED))

    def _apply(self, live: DigitalObject | None, planned: _Planned) -> None:
        props = planned.properties
        if live is None:
            live = self.ctx.content.create(props.object_type, props.object_id, props.owner_id)
        elif live.kind != props.object_type:
            raise ReplicateError(
                f"Live object {live.identifier} is a {live.kind.value}, "
                f"package holds a {props.object_type.value}"
            )

        options = UnpackOptions(
            replace=self.options.replace_mode,
            create_metadata_fields=self.options.create_metadata_fields,
        )
        packer_for(self.ctx, live).unpack(planned.archive, options)


def _walk(roots: list[str], children: dict[str, list[str]]) -> list[str]:
    """Breadth-first order over owner links, starting at ``roots``."""
    ordered: list[str] = []
    pending = list(roots)
    while pending:
        current = pending.pop(0)
        if current in ordered:
            continue
        ordered.append(current)
        pending.extend(children.get(current, []))
    return ordered
