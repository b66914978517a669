# ABOUTME: Package reader that extracts a serialized bag into a scratch directory
# ABOUTME: Exposes metadata, properties, logo and payload lookups plus digest verification
import logging
import shutil
import tarfile
import tempfile
import zipfile
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from pathlib import Path

from aip_replicate.digest import file_digest
from aip_replicate.exceptions import PackageFormatError
from aip_replicate.models import OBJFILE, ObjectProperties, XmlElement
from aip_replicate.writer import BAG_INFO, DATA_DIR, LOGO_FILE, METADATA_XML, PAYLOAD_OXUM_KEY

logger = logging.getLogger(__name__)

METADATA_SUFFIX = f"-{METADATA_XML}"


class PackageReader:
    """Read a serialized package.

    The archive is extracted on construction; ``clean()`` must run on every
    exit path, which the context manager form guarantees::

        with PackageReader(archive) as reader:
            elements = reader.read_metadata()
    """

    def __init__(
        self,
        archive: Path | str,
        verify: bool = False,
        digest_algorithm: str = "md5",
        work_dir: Path | str | None = None,
    ):
        """Open and extract a package.

        Args:
            archive: Serialized package (zip or tar+gzip)
            verify: Recompute payload digests against the manifest after extraction
            digest_algorithm: Manifest algorithm used when verifying
            work_dir: Parent directory for the extraction (system temp by default)

        Raises:
            PackageFormatError: If the archive cannot be extracted or fails verification
        """
        self.archive = Path(archive)
        self.digest_algorithm = digest_algorithm
        self.extract_dir: Path | None = Path(
            tempfile.mkdtemp(prefix="aip-", dir=str(work_dir) if work_dir else None)
        )
        try:
            self.bag_dir = self._extract()
            if verify:
                problems = verify_package(self.bag_dir, digest_algorithm)
                if problems:
                    raise PackageFormatError(
                        f"Package {self.archive.name} failed verification: {'; '.join(problems)}",
                        recovery_hint="Fetch the replica again or restore from another copy",
                    )
        except Exception:
            self.clean()
            raise

    @property
    def data_dir(self) -> Path:
        return self.bag_dir / DATA_DIR

    def _extract(self) -> Path:
        if not self.archive.is_file():
            raise PackageFormatError(f"Missing archive: {self.archive}")
        try:
            if zipfile.is_zipfile(self.archive):
                with zipfile.ZipFile(self.archive) as zf:
                    zf.extractall(self.extract_dir)
            elif tarfile.is_tarfile(self.archive):
                with tarfile.open(self.archive) as tf:
                    tf.extractall(self.extract_dir, filter="data")
            else:
                raise PackageFormatError(f"Unsupported archive format: {self.archive.name}")
        except (zipfile.BadZipFile, tarfile.TarError, EOFError, OSError) as e:
            raise PackageFormatError(f"Unable to extract {self.archive.name}: {e}") from e

        entries = list(self.extract_dir.iterdir())
        if len(entries) != 1 or not entries[0].is_dir():
            raise PackageFormatError(
                f"Package {self.archive.name} must contain exactly one bag directory"
            )
        logger.debug(f"Extracted {self.archive.name} to {entries[0]}")
        return entries[0]

    def read_properties(self, filename: str = OBJFILE) -> ObjectProperties:
        path = self.data_dir / filename
        if not path.is_file():
            raise PackageFormatError(f"Package {self.archive.name} has no {filename}")
        return ObjectProperties.from_lines(path.read_text(encoding="utf-8").splitlines())

    def read_metadata(self) -> list[XmlElement]:
        """Parse data/metadata.xml into its value elements."""
        return read_xml(self.data_dir / METADATA_XML)

    def find_logo(self) -> Path | None:
        logo = self.data_dir / LOGO_FILE
        return logo if logo.is_file() else None

    def find_document(self, filename: str) -> Path | None:
        document = self.data_dir / filename
        return document if document.is_file() else None

    def find_bitstream(
        self, bundle: str, predicate: Callable[[Path], bool] = lambda p: True
    ) -> Path | None:
        """First payload file in ``bundle`` accepted by ``predicate``."""
        for _, path, _ in self.bitstreams(bundle):
            if predicate(path):
                return path
        return None

    def bitstreams(self, bundle: str | None = None) -> Iterator[tuple[str, Path, list[XmlElement]]]:
        """Yield ``(bundle, payload path, payload metadata)`` for every payload file."""
        if bundle is not None:
            bundle_dirs = [self.data_dir / bundle]
        else:
            bundle_dirs = sorted(p for p in self.data_dir.iterdir() if p.is_dir())

        for bundle_dir in bundle_dirs:
            if not bundle_dir.is_dir():
                continue
            for path in sorted(bundle_dir.iterdir()):
                if path.name.endswith(METADATA_SUFFIX):
                    continue
                xml_path = bundle_dir / f"{path.name.split('.')[0]}{METADATA_SUFFIX}"
                elements = read_xml(xml_path) if xml_path.is_file() else []
                yield bundle_dir.name, path, elements

    def clean(self) -> None:
        """Remove the extraction directory. Safe to call more than once."""
        if self.extract_dir is None:
            return
        shutil.rmtree(self.extract_dir, ignore_errors=True)
        logger.debug(f"Removed extraction of {self.archive.name}")
        self.extract_dir = None

    def __enter__(self) -> "PackageReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clean()


def read_xml(path: Path) -> list[XmlElement]:
    """Parse a ``<metadata><value name=...>`` document.

    Raises:
        PackageFormatError: If the file is missing or is not well-formed
    """
    if not path.is_file():
        raise PackageFormatError(f"Missing metadata document: {path.name}")
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise PackageFormatError(f"Malformed metadata document {path.name}: {e}") from e
    if root.tag != "metadata":
        raise PackageFormatError(f"Unexpected root element <{root.tag}> in {path.name}")
    return [XmlElement(body=value.text or "", attributes=dict(value.attrib)) for value in root]


def verify_package(bag_dir: Path, algorithm: str = "md5") -> list[str]:
    """Check an extracted bag against its manifests.

    Returns:
        Human readable problems; an empty list means the bag is valid
    """
    problems: list[str] = []
    manifest = bag_dir / f"manifest-{algorithm}.txt"
    if not manifest.is_file():
        return [f"missing manifest-{algorithm}.txt"]

    recorded = _read_manifest(manifest)
    total_bytes = 0
    for rel_path, digest in recorded.items():
        path = bag_dir / rel_path
        if not path.is_file():
            problems.append(f"{rel_path} listed in manifest but missing")
            continue
        total_bytes += path.stat().st_size
        if file_digest(path, algorithm) != digest:
            problems.append(f"{rel_path} digest mismatch")

    for path in (bag_dir / DATA_DIR).rglob("*"):
        rel_path = path.relative_to(bag_dir).as_posix()
        if path.is_file() and rel_path not in recorded:
            problems.append(f"{rel_path} not listed in manifest")

    tagmanifest = bag_dir / f"tagmanifest-{algorithm}.txt"
    if tagmanifest.is_file():
        for rel_path, digest in _read_manifest(tagmanifest).items():
            path = bag_dir / rel_path
            if not path.is_file() or file_digest(path, algorithm) != digest:
                problems.append(f"tag file {rel_path} digest mismatch")

    oxum = _read_tags(bag_dir / BAG_INFO).get(PAYLOAD_OXUM_KEY)
    if oxum and oxum != f"{total_bytes}.{len(recorded)}":
        problems.append(f"Payload-Oxum {oxum} does not match {total_bytes}.{len(recorded)}")

    return problems


def _read_manifest(path: Path) -> dict[str, str]:
    entries = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        digest, _, rel_path = line.partition(" ")
        entries[rel_path.strip()] = digest
    return entries


def _read_tags(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    tags = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        label, sep, value = line.partition(":")
        if sep:
            tags[label.strip()] = value.strip()
    return tags
