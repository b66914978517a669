# ABOUTME: Package writer that lays out one object as a checksummed BagIt bag
# ABOUTME: Writes properties, metadata XML, payloads and logo, then serializes the bag
import logging
import shutil
import tarfile
import zipfile
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import BinaryIO

from aip_replicate.digest import AtomicCounter, DigestWriter, copy_stream, human_size
from aip_replicate.exceptions import (
    PackageIOError,
    PreconditionError,
    UnsupportedOperationError,
)
from aip_replicate.models import BITSTREAM_PREFIX, BagBitstream, Bitstream, XmlElement

logger = logging.getLogger(__name__)

DATA_DIR = "data"
LOGO_FILE = "logo"
METADATA_XML = "metadata.xml"
BAGIT_VERSION = "1.0"
BAG_INFO = "bag-info.txt"
BAGIT_TXT = "bagit.txt"

# Beyond the Repository BagIt profile
PROFILE_IDENTIFIER = (
    "https://raw.githubusercontent.com/dpscollaborative/btr_bagit_profile/master/"
    "btr-bagit-profile.json"
)
PROFILE_IDENTIFIER_KEY = "BagIt-Profile-Identifier"
BAG_SIZE_KEY = "Bag-Size"
PAYLOAD_OXUM_KEY = "Payload-Oxum"
BAGGING_DATE_KEY = "Bagging-Date"

ARCHIVE_EXTENSIONS = {"zip": "zip", "tgz": "tgz"}


@dataclass
class BuildTotals:
    """Running byte and file totals for a single package build."""

    bytes: AtomicCounter = field(default_factory=AtomicCounter)
    files: AtomicCounter = field(default_factory=AtomicCounter)

    def record(self, byte_count: int) -> None:
        self.bytes.add(byte_count)
        self.files.add(1)

    def oxum(self) -> str:
        return f"{self.bytes}.{self.files}"


def default_retrieve(bitstream: Bitstream) -> BinaryIO:
    """Open a bitstream's inline content."""
    if bitstream.content is None:
        raise PackageIOError(
            f"Bitstream {bitstream.id} has no content to package",
            recovery_hint="Pass a retrieve callable that reads bitstreams from the repository",
        )
    return BytesIO(bitstream.content)


class PackageWriter:
    """Write one repository object as a serialized BagIt package."""

    def __init__(
        self,
        directory: Path | str,
        archive_format: str,
        logo: Bitstream | None,
        properties: dict[str, list[str]],
        metadata: list[XmlElement],
        bitstreams: list[BagBitstream] | None = None,
        documents: dict[str, str] | None = None,
        tag_files: dict[str, dict[str, str]] | None = None,
        digest_algorithm: str = "md5",
        retrieve: Callable[[Bitstream], BinaryIO] | None = None,
    ):
        """Initialize package writer.

        Args:
            directory: Bag root the package is written to before serialization
            archive_format: Serialization format (zip or tgz)
            logo: Logo bitstream, or None
            properties: Mapping of properties filename to its lines
            metadata: Elements written to data/metadata.xml
            bitstreams: Payloads written under data/<bundle>/
            documents: Additional XML documents (filename to text) under data/
            tag_files: Configured tag files and their fields
            digest_algorithm: hashlib algorithm used for manifests
            retrieve: Callable opening a bitstream's content
        """
        if archive_format not in ARCHIVE_EXTENSIONS:
            raise UnsupportedOperationError(f"Unsupported archive format: {archive_format}")
        self.directory = Path(directory)
        self.archive_format = archive_format
        self.logo = logo
        self.properties = properties
        self.metadata = metadata
        self.bitstreams = bitstreams or []
        self.documents = documents or {}
        self.tag_files = tag_files or {}
        self.digest_algorithm = digest_algorithm
        self.retrieve = retrieve or default_retrieve

    def package(self) -> Path:
        """Write the bag and serialize it to a single archive.

        Returns:
            Path to the serialized archive

        Raises:
            PreconditionError: If the data directory already exists
            UnsupportedOperationError: If a payload must be fetched by reference
            PackageIOError: If writing or copying any file fails
        """
        data_dir = self.directory / DATA_DIR
        if data_dir.exists():
            raise PreconditionError(
                f"Unable to create bag {self.directory.name}, data directory already exists: {data_dir}",
                recovery_hint="Another build is running or crashed here; clear the directory manually",
            )

        totals = BuildTotals()
        checksums: dict[Path, str] = {}

        try:
            data_dir.mkdir(parents=True)

            for filename, lines in self.properties.items():
                path = data_dir / filename
                checksums[path] = self._write_lines(path, lines, totals)

            metadata_xml = data_dir / METADATA_XML
            checksums[metadata_xml] = self._write_xml(self.metadata, metadata_xml, totals)

            for filename, text in self.documents.items():
                path = data_dir / filename
                checksums[path] = self._write_bytes(path, text.encode("utf-8"), totals)

            for bag_bitstream in self.bitstreams:
                checksums.update(self._write_bitstream(data_dir, bag_bitstream, totals))

            if self.logo is not None:
                logo_path = data_dir / LOGO_FILE
                checksums[logo_path] = self._copy_bitstream(self.logo, logo_path, totals)

            self._write_tag_files(checksums, totals)
            archive = self._serialize()
        except OSError as e:
            raise PackageIOError(
                f"Failed to write package {self.directory.name}: {e}",
                recovery_hint=f"Clear {self.directory} before building again",
            ) from e

        shutil.rmtree(self.directory)
        logger.info(
            f"Wrote package {archive.name} ({totals.files} files, {human_size(totals.bytes.get())})"
        )
        return archive

    def _open(self, path: Path) -> DigestWriter:
        path.parent.mkdir(parents=True, exist_ok=True)
        return DigestWriter(open(path, "xb"), self.digest_algorithm)

    def _write_lines(self, path: Path, lines: list[str], totals: BuildTotals) -> str:
        with self._open(path) as out:
            for line in lines:
                out.write(line.encode("utf-8"))
                out.write(b"\n")
        totals.record(out.count)
        logger.debug(f"Wrote properties to {path}")
        return out.hexdigest()

    def _write_bytes(self, path: Path, content: bytes, totals: BuildTotals) -> str:
        with self._open(path) as out:
            out.write(content)
        totals.record(out.count)
        logger.debug(f"Wrote document to {path}")
        return out.hexdigest()

    def _write_xml(self, elements: list[XmlElement], path: Path, totals: BuildTotals) -> str:
        root = ET.Element("metadata")
        for element in elements:
            if element.body is None:
                continue
            value = ET.SubElement(root, "value")
            for key, attr in element.attributes.items():
                if key is not None and attr is not None:
                    value.set(key, attr)
            value.text = element.body
        return self._write_bytes(
            path, ET.tostring(root, encoding="utf-8", xml_declaration=True), totals
        )

    def _write_bitstream(
        self, data_dir: Path, bag_bitstream: BagBitstream, totals: BuildTotals
    ) -> dict[Path, str]:
        bitstream = bag_bitstream.bitstream
        bundle_dir = data_dir / bag_bitstream.bundle
        bundle_dir.mkdir(parents=True, exist_ok=True)

        xml_path = bundle_dir / f"{BITSTREAM_PREFIX}{bitstream.id}-{METADATA_XML}"
        written = {xml_path: self._write_xml(bag_bitstream.xml, xml_path, totals)}

        if bag_bitstream.fetch_url is not None:
            raise UnsupportedOperationError(
                f"Bitstream {bitstream.id} must be fetched from {bag_bitstream.fetch_url}; "
                "fetch.txt for bags is not supported"
            )

        data_file = bundle_dir / bitstream.filename()
        written[data_file] = self._copy_bitstream(bitstream, data_file, totals)
        return written

    def _copy_bitstream(self, bitstream: Bitstream, path: Path, totals: BuildTotals) -> str:
        source = self.retrieve(bitstream)
        try:
            with self._open(path) as out:
                copy_stream(source, out)
        finally:
            source.close()
        totals.record(out.count)
        logger.debug(f"Copied bitstream {bitstream.id} to {path}")
        return out.hexdigest()

    def _bag_info(self, totals: BuildTotals) -> dict[str, str]:
        bag_info = {
            PROFILE_IDENTIFIER_KEY: PROFILE_IDENTIFIER,
            BAG_SIZE_KEY: human_size(totals.bytes.get()),
            PAYLOAD_OXUM_KEY: totals.oxum(),
            BAGGING_DATE_KEY: date.today().isoformat(),
        }
        bag_info.update(self.tag_files.get(BAG_INFO, {}))
        return bag_info

    def _write_tag_files(self, checksums: dict[Path, str], totals: BuildTotals) -> None:
        alg = self.digest_algorithm
        tag_texts = {
            BAGIT_TXT: f"BagIt-Version: {BAGIT_VERSION}\nTag-File-Character-Encoding: UTF-8\n",
            BAG_INFO: format_tags(self._bag_info(totals)),
        }
        for filename, fields in self.tag_files.items():
            if filename != BAG_INFO:
                tag_texts[filename] = format_tags(fields)
        tag_texts[f"manifest-{alg}.txt"] = "".join(
            f"{digest}  {path.relative_to(self.directory).as_posix()}\n"
            for path, digest in sorted(checksums.items())
        )

        tag_checksums = {}
        for filename, text in tag_texts.items():
            path = self.directory / filename
            with DigestWriter(open(path, "xb"), alg) as out:
                out.write(text.encode("utf-8"))
            tag_checksums[filename] = out.hexdigest()

        with open(self.directory / f"tagmanifest-{alg}.txt", "x", encoding="utf-8") as f:
            for filename, digest in sorted(tag_checksums.items()):
                f.write(f"{digest}  {filename}\n")

    def _serialize(self) -> Path:
        root = self.directory
        archive = root.parent / f"{root.name}.{ARCHIVE_EXTENSIONS[self.archive_format]}"
        if self.archive_format == "zip":
            with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED) as zf:
                for path in sorted(root.rglob("*")):
                    zf.write(path, path.relative_to(root.parent).as_posix())
        else:
            with tarfile.open(archive, "w:gz") as tf:
                tf.add(root, arcname=root.name)
        return archive


def format_tags(fields: dict[str, str]) -> str:
    """Render tag-file fields as ``Label: value`` lines."""
    return "".join(f"{label}: {value}\n" for label, value in fields.items())
