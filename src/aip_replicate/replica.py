# ABOUTME: Replica store client: staging directories and put/get/exists/delete by key
# ABOUTME: Provides safe replica keys plus local filesystem and MinIO store backends
import logging
import os
import shutil
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from minio import Minio
from minio.error import S3Error

from aip_replicate.config import ReplicateConfig
from aip_replicate.exceptions import ReplicaNotFoundError

logger = logging.getLogger(__name__)

SAFE_CHARS = frozenset(string.ascii_letters + string.digits + ".")
HEX_DIGITS = frozenset(string.hexdigits)


def safe_id(identifier: str) -> str:
    """Turn a persistent identifier into a filesystem and URL safe name.

    ASCII letters, digits and non-leading dots are kept, ``/`` becomes ``-``
    and every other byte is written as ``_XX``, so the mapping is reversible
    (``123456789/2`` -> ``123456789-2``).
    """
    if not identifier:
        raise ValueError("Identifier cannot be empty")
    parts = []
    for i, ch in enumerate(identifier):
        if ch == "/":
            parts.append("-")
        elif ch in SAFE_CHARS and not (ch == "." and i == 0):
            parts.append(ch)
        else:
            parts.extend(f"_{b:02X}" for b in ch.encode("utf-8"))
    return "".join(parts)


def unsafe_id(name: str) -> str:
    """Reverse ``safe_id``.

    Raises:
        ValueError: If ``name`` was not produced by ``safe_id``
    """
    raw = bytearray()
    i = 0
    while i < len(name):
        ch = name[i]
        if ch == "-":
            raw += b"/"
            i += 1
        elif ch == "_":
            code = name[i + 1:i + 3]
            if len(code) != 2 or not set(code) <= HEX_DIGITS:
                raise ValueError(f"Invalid escape in replica name: {name}")
            raw.append(int(code, 16))
            i += 3
        else:
            raw += ch.encode("ascii")
            i += 1
    return raw.decode("utf-8")


def replica_key(identifier: str, archive_format: str) -> str:
    """Store key for an object's package: ``<safe id>.<archive format>``."""
    return f"{safe_id(identifier)}.{archive_format}"


class ReplicaStore(Protocol):
    """Remote store holding serialized packages, grouped by store group."""

    def put(self, group: str, key: str, path: Path) -> None: ...

    def get(self, group: str, key: str, dest: Path) -> Path: ...

    def exists(self, group: str, key: str) -> bool: ...

    def delete(self, group: str, key: str) -> bool: ...

    def keys(self, group: str) -> list[str]: ...


class LocalReplicaStore:
    """Replica store kept in a local (or mounted) directory, one folder per group."""

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()

    def _path(self, group: str, key: str) -> Path:
        return self.root / group / key

    def put(self, group: str, key: str, path: Path) -> None:
        target = self._path(group, key)
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_file = target.parent / f".tmp_{key}_{os.getpid()}"
        try:
            shutil.copyfile(path, temp_file)
            os.replace(temp_file, target)
        finally:
            if temp_file.exists():
                temp_file.unlink()
        logger.debug(f"Stored {key} in {target.parent}")

    def get(self, group: str, key: str, dest: Path) -> Path:
        source = self._path(group, key)
        if not source.is_file():
            raise ReplicaNotFoundError(group, key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)
        return dest

    def exists(self, group: str, key: str) -> bool:
        return self._path(group, key).is_file()

    def delete(self, group: str, key: str) -> bool:
        path = self._path(group, key)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def keys(self, group: str) -> list[str]:
        group_dir = self.root / group
        if not group_dir.is_dir():
            return []
        return sorted(p.name for p in group_dir.iterdir() if p.is_file() and not p.name.startswith("."))


@dataclass
class MinioStoreConfig:
    """MinIO connection settings, loaded from environment variables."""

    url: str = "http://localhost:9000"
    access_key: str = "minioadmin"
    secret_key: str = "minioadmin"
    bucket: str = "replicas"
    secure: bool = False

    @classmethod
    def from_env(cls) -> "MinioStoreConfig":
        url = os.getenv("MINIO_URL", "http://localhost:9000")
        return cls(
            url=url,
            access_key=os.getenv("MINIO_ACCESS_KEY", "minioadmin"),
            secret_key=os.getenv("MINIO_SECRET_KEY", "minioadmin"),
            bucket=os.getenv("MINIO_BUCKET", "replicas"),
            secure=url.startswith("https://"),
        )


class MinioReplicaStore:
    """Replica store on an S3-compatible MinIO bucket; groups become key prefixes."""

    def __init__(self, config: MinioStoreConfig, client: Minio | None = None):
        """Initialize MinIO store.

        Args:
            config: MinioStoreConfig with connection details
            client: Pre-built client, mainly for tests
        """
        endpoint = config.url.replace("http://", "").replace("https://", "")
        self.client = client or Minio(
            endpoint,
            access_key=config.access_key,
            secret_key=config.secret_key,
            secure=config.secure,
        )
        self.bucket = config.bucket

    def ensure_bucket(self) -> None:
        """Create bucket if it doesn't exist."""
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)

    def put(self, group: str, key: str, path: Path) -> None:
        self.client.fput_object(
            self.bucket, f"{group}/{key}", str(path), content_type="application/octet-stream"
        )

    def get(self, group: str, key: str, dest: Path) -> Path:
        try:
            self.client.fget_object(self.bucket, f"{group}/{key}", str(dest))
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise ReplicaNotFoundError(group, key) from e
            raise
        return dest

    def exists(self, group: str, key: str) -> bool:
        try:
            self.client.stat_object(self.bucket, f"{group}/{key}")
            return True
        except S3Error as e:
            if e.code == "NoSuchKey":
                return False
            raise

    def delete(self, group: str, key: str) -> bool:
        if not self.exists(group, key):
            return False
        self.client.remove_object(self.bucket, f"{group}/{key}")
        return True

    def keys(self, group: str) -> list[str]:
        objects = self.client.list_objects(self.bucket, prefix=f"{group}/", recursive=True)
        return sorted(obj.object_name[len(group) + 1:] for obj in objects)


class ReplicaManager:
    """Stage, transfer and fetch packages for one configured store group."""

    def __init__(self, config: ReplicateConfig, store: ReplicaStore):
        self.config = config
        self.store = store
        self.group = config.store_group

    def key_for(self, identifier: str) -> str:
        return replica_key(identifier, self.config.archive_format)

    def stage(self, identifier: str) -> Path:
        """Directory a package for ``identifier`` should be built in."""
        group_dir = self.config.resolve_staging_dir() / self.group
        group_dir.mkdir(parents=True, exist_ok=True)
        return group_dir / safe_id(identifier)

    def transfer(self, archive: Path) -> str:
        """Upload a serialized package; its filename is its store key."""
        self.store.put(self.group, archive.name, archive)
        logger.info(f"Transferred {archive.name} to {self.group}")
        return archive.name

    def fetch(self, identifier: str) -> Path | None:
        """Download the package for ``identifier`` into the staging area, if stored."""
        key = self.key_for(identifier)
        if not self.store.exists(self.group, key):
            return None
        dest = self.config.resolve_staging_dir() / self.group / "fetched" / key
        dest.parent.mkdir(parents=True, exist_ok=True)
        return self.store.get(self.group, key, dest)

    def exists(self, identifier: str) -> bool:
        return self.store.exists(self.group, self.key_for(identifier))

    def remove(self, identifier: str) -> bool:
        removed = self.store.delete(self.group, self.key_for(identifier))
        if removed:
            logger.info(f"Removed {self.key_for(identifier)} from {self.group}")
        return removed

    def identifiers(self) -> list[str]:
        """Identifiers of every package of the configured format in the group."""
        suffix = f".{self.config.archive_format}"
        found = []
        for key in self.store.keys(self.group):
            if not key.endswith(suffix):
                continue
            try:
                found.append(unsafe_id(key[: -len(suffix)]))
            except ValueError:
                logger.warning(f"Ignoring foreign key {key} in {self.group}")
        return found
