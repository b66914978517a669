# ABOUTME: Configuration management for aip-replicate packaging and restore
# ABOUTME: Defines ReplicateConfig, tag-file field mapping and named restore presets

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, model_validator

from aip_replicate.exceptions import ConfigError

logger = logging.getLogger(__name__)

ARCHIVE_FORMATS = ("zip", "tgz")
ENV_PREFIX = "AIP_REPLICATE_"
TAG_ENV_PREFIX = f"{ENV_PREFIX}TAG__"


@dataclass
class ReplicateConfig:
    """Configuration for package writers, readers and the replica manager."""

    staging_dir: str = "~/.local/state/aip-replicate/staging"
    archive_format: str = "zip"
    store_group: str = "aip_store"
    digest_algorithm: str = "md5"
    verify_on_read: bool = False
    tag_fields: dict[str, str] = field(default_factory=dict)
    log_level: str = "INFO"
    log_file: str | None = None

    def __post_init__(self):
        if self.archive_format not in ARCHIVE_FORMATS:
            raise ConfigError(
                f"Unsupported archive format: {self.archive_format}",
                recovery_hint=f"Use one of: {', '.join(ARCHIVE_FORMATS)}",
            )

    @classmethod
    def from_env(cls) -> "ReplicateConfig":
        """Create config from environment variables.

        Tag fields are read from variables named
        ``AIP_REPLICATE_TAG__<FILE>__<FIELD>``; underscores inside a segment
        become hyphens, so ``AIP_REPLICATE_TAG__BAG_INFO__SOURCE_ORGANIZATION``
        configures ``bag-info.source-organization``.
        """
        tag_fields = {}
        for name, value in os.environ.items():
            if not name.startswith(TAG_ENV_PREFIX):
                continue
            segments = name[len(TAG_ENV_PREFIX):].split("__")
            key = ".".join(s.lower().replace("_", "-") for s in segments)
            tag_fields[key] = value

        verify = os.environ.get(f"{ENV_PREFIX}VERIFY_ON_READ", "false")
        return cls(
            staging_dir=os.environ.get(
                f"{ENV_PREFIX}STAGING_DIR", "~/.local/state/aip-replicate/staging"
            ),
            archive_format=os.environ.get(f"{ENV_PREFIX}ARCHIVE_FORMAT", "zip"),
            store_group=os.environ.get(f"{ENV_PREFIX}STORE_GROUP", "aip_store"),
            verify_on_read=verify.lower() in ("1", "true", "yes"),
            tag_fields=tag_fields,
            log_level=os.environ.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO"),
            log_file=os.environ.get(f"{ENV_PREFIX}LOG_FILE"),
        )

    def resolve_staging_dir(self) -> Path:
        """Resolve and expand staging path."""
        return Path(self.staging_dir).expanduser().resolve()

    def resolve_log_file(self) -> Path | None:
        if not self.log_file:
            return None
        return Path(self.log_file).expanduser().resolve()

    def resolve_log_level(self) -> int:
        """Numeric logging level for ``log_level``.

        Raises:
            ConfigError: If the name is not a standard logging level
        """
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ConfigError(
                f"Unknown log level: {self.log_level}",
                recovery_hint="Use DEBUG, INFO, WARNING, ERROR or CRITICAL",
            )
        return level

    def tag_files(self) -> dict[str, dict[str, str]]:
        """Group configured tag fields by the tag file they belong to.

        Returns:
            Mapping of tag filename (e.g. ``bag-info.txt``) to its fields

        Raises:
            ConfigError: If a key is not of the form ``<tag-file>.<field>``
        """
        tag_files: dict[str, dict[str, str]] = {}
        for key, value in self.tag_fields.items():
            segments = key.split(".")
            if len(segments) != 2 or not all(segments):
                raise ConfigError(
                    f"Invalid tag field key: {key}",
                    recovery_hint="Tag field keys must look like '<tag-file>.<field>'",
                )
            tag_file, field_name = segments
            label = "-".join(part.capitalize() for part in field_name.split("-"))
            tag_files.setdefault(f"{tag_file}.txt", {})[label] = value
        return tag_files


class RestoreOptions(BaseModel):
    """Reconciliation settings for one named restore operation."""

    restore_mode: bool = False
    replace_mode: bool = False
    keep_existing_mode: bool = False
    recursive_mode: bool = False
    create_metadata_fields: bool = True
    skip_if_parent_missing: bool = False

    @model_validator(mode="after")
    def check_single_mode(self) -> "RestoreOptions":
        """Ensure exactly one reconciliation mode is selected."""
        selected = [self.restore_mode, self.replace_mode, self.keep_existing_mode]
        if sum(selected) != 1:
            raise ValueError(
                "Exactly one of restore_mode, replace_mode, keep_existing_mode must be set"
            )
        return self

    @classmethod
    def preset(cls, name: str) -> "RestoreOptions":
        """Look up a named restore operation.

        Raises:
            ConfigError: If no operation with that name is defined
        """
        try:
            return cls(**RESTORE_PRESETS[name])
        except KeyError:
            raise ConfigError(
                f"Unknown restore operation: {name}",
                recovery_hint=f"Use one of: {', '.join(sorted(RESTORE_PRESETS))}",
            ) from None


RESTORE_PRESETS: dict[str, dict[str, bool]] = {
    "restorefromaip": {
        "restore_mode": True,
        "recursive_mode": True,
        "create_metadata_fields": True,
        "skip_if_parent_missing": True,
    },
    "replacewithaip": {
        "replace_mode": True,
        "recursive_mode": True,
        "create_metadata_fields": True,
        "skip_if_parent_missing": True,
    },
    "restorekeepexisting": {
        "keep_existing_mode": True,
        "recursive_mode": True,
        "create_metadata_fields": True,
        "skip_if_parent_missing": True,
    },
    "restoresinglefromaip": {
        "restore_mode": True,
        "recursive_mode": False,
        "create_metadata_fields": True,
        "skip_if_parent_missing": False,
    },
    "replacesinglewithaip": {
        "replace_mode": True,
        "recursive_mode": False,
        "create_metadata_fields": True,
        "skip_if_parent_missing": False,
    },
}
