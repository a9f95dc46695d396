"""
Print package reader.

Opens a ``.gcode.3mf`` archive held in memory and locates the two entries
the rest of the core cares about: the machine-code stream and the metadata
document. Slicers disagree about where these live, so each is found by a
chain of strategies, most specific first.

Also provides ``write_archive`` so packages built by the concatenation
engine are serialized the same way everywhere.
"""

from __future__ import annotations

import io
import json
import re
import zipfile
import zlib
from typing import Dict, Iterable, List, Optional, Tuple

from core.exceptions import ParseError
from models.package import PackageContents
from logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_MAX_PACKAGE_BYTES = 512 * 1024 * 1024

# Top-level names some slicers use for the stream
CONVENTIONAL_GCODE_NAMES = ("model.gcode", "plate_1.gcode")

STRUCTURED_METADATA_PATHS = ("3D/3dmodel.model", "Metadata/metadata.xml", "metadata.xml")
JSON_METADATA_PATHS = ("metadata.json", "Metadata.json", "Metadata/metadata.json")

METADATA_NAME_HINTS = ("metadata", "config", "settings", "info", "model")

# Line-start commands that identify a machine-code stream
_COMMAND_LINE_RE = re.compile(r"^\s*(?:G0|G1|G28|G90|G91|G92|M82|M104|M109|M140|M190)\b", re.MULTILINE)
_PLATE_RE = re.compile(r"plate_(\d+)\.gcode$", re.IGNORECASE)

# Fixed timestamp so identical entries always serialize to identical bytes
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _plate_number(name: str) -> int:
    match = _PLATE_RE.search(name)
    return int(match.group(1)) if match else 10 ** 6


def write_archive(entries: Dict[str, bytes], order: Optional[Iterable[str]] = None) -> bytes:
    """
    Serialize entries to ZIP bytes.

    Entries are written in ``order`` (default: dict order) with a fixed
    timestamp, so the output depends only on names and contents.
    """
    names = list(order) if order is not None else list(entries)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zout:
        for name in names:
            info = zipfile.ZipInfo(name, date_time=_ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            zout.writestr(info, entries[name])
    return buffer.getvalue()


class PackageReader:
    """
    Locate the machine-code stream and metadata inside a package archive.

    Stateless apart from the size cap, so one instance can be shared by
    every thread.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_PACKAGE_BYTES):
        self.max_bytes = max_bytes

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def read(self, data: bytes, source: Optional[str] = None) -> PackageContents:
        """
        Read a package archive.

        Args:
            data: Raw archive bytes
            source: Name used in error messages (storage path or filename)

        Returns:
            PackageContents with the stream, metadata bytes and other entries

        Raises:
            ParseError: If the bytes are not a ZIP archive, the archive
                exceeds the size cap, or no machine-code entry is found
        """
        entries = self.read_entries(data, source=source)

        gcode_entry = self.locate_gcode_entry(entries)
        if gcode_entry is None:
            raise ParseError(
                "No G-code entry found in package",
                source=source,
                details={"entries": list(entries)[:50]},
            )

        metadata_entry = self.locate_metadata_entry(entries, exclude=gcode_entry)
        metadata_raw = entries[metadata_entry] if metadata_entry else b""
        if metadata_entry is None:
            logger.debug(f"No metadata entry in {source or 'package'}")

        auxiliary = {
            name: content
            for name, content in entries.items()
            if name not in (gcode_entry, metadata_entry)
        }

        return PackageContents(
            gcode=_decode(entries[gcode_entry]),
            gcode_entry=gcode_entry,
            metadata_raw=metadata_raw,
            metadata_entry=metadata_entry,
            auxiliary_files=auxiliary,
            entries=entries,
        )

    def read_entries(self, data: bytes, source: Optional[str] = None) -> Dict[str, bytes]:
        """
        Load every file entry of an archive, preserving archive order.

        Raises:
            ParseError: If the bytes are not a ZIP archive, an entry cannot
                be decompressed, or the package is too large
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                infos = [info for info in zf.infolist() if not info.is_dir()]

                total = sum(info.file_size for info in infos)
                if total > self.max_bytes:
                    raise ParseError(
                        f"Package expands to {total} bytes, limit is {self.max_bytes}",
                        source=source,
                        details={"uncompressed_bytes": total, "limit_bytes": self.max_bytes},
                    )

                return {info.filename: zf.read(info.filename) for info in infos}
        except zipfile.BadZipFile as e:
            raise ParseError(f"Not a ZIP archive: {e}", source=source) from e
        except (zipfile.LargeZipFile, RuntimeError, EOFError) as e:
            raise ParseError(f"Archive could not be read: {e}", source=source) from e
        except (zlib.error, NotImplementedError) as e:
            # Corrupt deflate stream or a compression method zipfile cannot decode
            raise ParseError(f"Archive entry could not be decompressed: {e}", source=source) from e

    # =========================================================================
    # LOCATION STRATEGIES
    # =========================================================================

    def locate_gcode_entry(self, entries: Dict[str, bytes]) -> Optional[str]:
        """Name of the machine-code entry, or None."""
        names = list(entries)

        # 1. Metadata/ subdirectory, plate_1 first then lowest plate number
        in_metadata = [n for n in names if n.startswith("Metadata/") and n.lower().endswith(".gcode")]
        if in_metadata:
            return sorted(in_metadata, key=lambda n: (_plate_number(n), names.index(n)))[0]

        # 2. Conventional top-level names
        for candidate in CONVENTIONAL_GCODE_NAMES:
            if candidate in entries:
                return candidate

        # 3. Any .gcode extension
        for name in names:
            if name.lower().endswith(".gcode"):
                return name

        # 4. Content sniffing
        for name in names:
            if self._looks_like_gcode(entries[name]):
                logger.info(f"G-code located by content in '{name}'")
                return name

        return None

    def locate_metadata_entry(
        self,
        entries: Dict[str, bytes],
        exclude: Optional[str] = None,
    ) -> Optional[str]:
        """Name of the metadata entry, or None."""
        for candidate in STRUCTURED_METADATA_PATHS + JSON_METADATA_PATHS:
            if candidate in entries and candidate != exclude:
                return candidate

        for name in entries:
            if name == exclude:
                continue
            lowered = name.lower()
            if not any(hint in lowered for hint in METADATA_NAME_HINTS):
                continue
            if self._looks_like_metadata(entries[name]):
                logger.debug(f"Metadata located by content in '{name}'")
                return name

        return None

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _looks_like_gcode(content: bytes) -> bool:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return len(_COMMAND_LINE_RE.findall(text, 0, 256 * 1024)) >= 2

    @staticmethod
    def _looks_like_metadata(content: bytes) -> bool:
        try:
            text = content.decode("utf-8").strip()
        except UnicodeDecodeError:
            return False

        try:
            json.loads(text)
            return True
        except ValueError:
            return text.startswith("<?xml") or text.startswith("<model")


def summarize_entries(entries: Dict[str, bytes]) -> List[Tuple[str, int]]:
    """(name, size) pairs, used when reporting what a package holds."""
    return [(name, len(content)) for name, content in entries.items()]
