"""
Concatenation engine.

Builds one printable package out of several Jobs: the machine-code stream
of every Job is repeated once per requested copy, the copies are joined
behind delimiter comments, and the result is written into a clone of a
base package so thumbnails, project settings and the rest of the required
entries stay intact.

Output layout of the stream:

    ; ====== CONCATENATED PACKAGE: 3 SEGMENT(S) ======
    ; source: job 5 x2
    ; source: job 9 x1
    ; ====== SEGMENT 1 OF 3 BEGIN (job 5) ======
    <job 5 stream>
    ; ====== SEGMENT 1 OF 3 END (job 5) ======
    ...

The build is deterministic: the same inputs always produce the same bytes.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from core.deadline import Deadline
from core.exceptions import ParseError, SizeLimitError
from models.concatenation import ConcatenationCandidate, ConcatenationResult
from models.package import Package, PackageContents, PackageSummary
from modules.gcode_stats import GcodeInfo, extract_gcode_info
from modules.metadata_extractor import SLICE_INFO_ENTRY
from modules.package_reader import PackageReader, write_archive
from modules.package_validator import PackageValidator
from logging_config import get_logger


logger = get_logger(__name__)

MB = 1024 * 1024
DEFAULT_MAX_OUTPUT_BYTES = 500 * MB
DEFAULT_FULL_HASH_LIMIT = 64 * MB
DEFAULT_SAMPLE_BYTES = 4 * MB

# Plate JSON keys holding per-print totals
_PLATE_TIME_KEYS = ("prediction", "print_time")
_PLATE_WEIGHT_KEYS = ("weight", "filament_used")

_SLICE_INFO_VALUE_RE = r'(<metadata\s+key="{key}"\s+value=")([^"]*)(")'

PackageLoader = Callable[[int], bytes]


@dataclass(frozen=True)
class Segment:
    """One copy of one Job's stream."""

    job_id: int
    source_name: str
    gcode: str
    size: int
    info: GcodeInfo


def compute_checksum(
    data: bytes,
    full_hash_limit: int = DEFAULT_FULL_HASH_LIMIT,
    sample_bytes: int = DEFAULT_SAMPLE_BYTES,
) -> str:
    """
    Lowercase MD5 hex of a stream.

    Streams above ``full_hash_limit`` are hashed from a head sample, a tail
    sample and the total length instead of every byte.
    """
    if len(data) <= full_hash_limit:
        return hashlib.md5(data).hexdigest()

    digest = hashlib.md5()
    digest.update(data[:sample_bytes])
    digest.update(data[-sample_bytes:])
    digest.update(str(len(data)).encode("ascii"))
    return digest.hexdigest()


def _begin_marker(index: int, total: int, job_id: int) -> str:
    return f"; ====== SEGMENT {index} OF {total} BEGIN (job {job_id}) ======\n"


def _end_marker(index: int, total: int, job_id: int) -> str:
    return f"; ====== SEGMENT {index} OF {total} END (job {job_id}) ======\n"


def _banner(segments: List[Segment]) -> str:
    counts: "OrderedDict[str, int]" = OrderedDict()
    for segment in segments:
        counts[segment.source_name] = counts.get(segment.source_name, 0) + 1

    lines = [f"; ====== CONCATENATED PACKAGE: {len(segments)} SEGMENT(S) ======"]
    lines.extend(f"; source: {name} x{count}" for name, count in counts.items())
    return "\n".join(lines) + "\n"


class ConcatenationEngine:
    """
    Replicate and join Job streams into a valid package.

    Args:
        reader: Package reader used for the base and every source package
        validator: Gate applied to the built package
        max_output_bytes: Ceiling for the joined stream
        fail_on_truncation: Raise instead of dropping segments that do not fit
        checksum_full_hash_limit: Above this size the checksum is sampled
        checksum_sample_bytes: Head/tail sample size for sampled checksums
    """

    def __init__(
        self,
        reader: Optional[PackageReader] = None,
        validator: Optional[PackageValidator] = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        fail_on_truncation: bool = False,
        checksum_full_hash_limit: int = DEFAULT_FULL_HASH_LIMIT,
        checksum_sample_bytes: int = DEFAULT_SAMPLE_BYTES,
    ):
        self.reader = reader or PackageReader()
        self.validator = validator or PackageValidator(reader=self.reader)
        self.max_output_bytes = max_output_bytes
        self.fail_on_truncation = fail_on_truncation
        self.checksum_full_hash_limit = checksum_full_hash_limit
        self.checksum_sample_bytes = checksum_sample_bytes

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def build(
        self,
        candidate: ConcatenationCandidate,
        quantities: Dict[int, int],
        base_job_id: int,
        load_package: PackageLoader,
        deadline: Optional[Deadline] = None,
        source_names: Optional[Dict[int, str]] = None,
    ) -> ConcatenationResult:
        """
        Build the concatenated package for a candidate.

        Args:
            candidate: Jobs to include, in order
            quantities: Copies per Job id; Jobs absent from the map get one
            base_job_id: Job whose package is cloned around the new stream
            load_package: Returns the archive bytes for a Job id
            deadline: Checked between Jobs and between segments
            source_names: Display name per Job id for the banner and summary

        Returns:
            ConcatenationResult with the validated package

        Raises:
            ValueError: If a quantity is negative or nothing is requested
            ParseError: If a package cannot be read
            SizeLimitError: If no segment fits, or truncation is disallowed
            ValidationError: If the built package is not valid
            OperationTimeoutError: If the deadline passes
        """
        deadline = deadline or Deadline.unbounded()
        source_names = source_names or {}

        for job_id, quantity in quantities.items():
            if quantity < 0:
                raise ValueError(f"Quantity for job {job_id} must not be negative, got {quantity}")

        loaded: Dict[int, PackageContents] = {}

        def _contents(job_id: int) -> PackageContents:
            if job_id not in loaded:
                deadline.check("package load")
                data = load_package(job_id)
                try:
                    loaded[job_id] = self.reader.read(data, source=source_names.get(job_id, f"job {job_id}"))
                except ParseError as e:
                    raise ParseError(
                        f"Package for job {job_id} could not be read: {e.message}",
                        source=e.source,
                        details={"job_id": job_id},
                    ) from e
            return loaded[job_id]

        base = _contents(base_job_id)

        segments: List[Segment] = []
        for job_id in OrderedDict.fromkeys(candidate.job_ids):
            quantity = quantities.get(job_id, 1)
            if quantity == 0:
                continue

            contents = _contents(job_id)
            gcode = contents.gcode if contents.gcode.endswith("\n") else contents.gcode + "\n"
            segment = Segment(
                job_id=job_id,
                source_name=source_names.get(job_id, f"job {job_id}"),
                gcode=gcode,
                size=len(gcode.encode("utf-8")),
                info=extract_gcode_info(contents.gcode),
            )
            segments.extend([segment] * quantity)

        requested = len(segments)
        if requested == 0:
            raise ValueError("Nothing to concatenate: every quantity is zero")

        fitting = self._fitting_count(segments)
        warnings: List[str] = []
        if fitting == 0:
            raise SizeLimitError(requested, 0, self.max_output_bytes)
        if fitting < requested:
            if self.fail_on_truncation:
                raise SizeLimitError(requested, fitting, self.max_output_bytes)
            warnings.append(
                f"Output truncated to {fitting} of {requested} segments "
                f"to stay under {self.max_output_bytes} bytes"
            )
            logger.warning(warnings[-1])

        included = segments[:fitting]
        stream = self._render(included, deadline).encode("utf-8")

        checksum = compute_checksum(stream, self.checksum_full_hash_limit, self.checksum_sample_bytes)
        summary = PackageSummary(
            original_files=[s.source_name for s in included],
            total_layers=sum(s.info.layers for s in included),
            total_time=sum(s.info.time_minutes for s in included),
            total_material=sum(s.info.material_grams for s in included),
            checksums={base.gcode_entry: checksum},
        )

        entries = self._clone_entries(base, stream, checksum, summary, len(included))
        package = Package(data=write_archive(entries), entries=entries, summary=summary)

        validation = self.validator.ensure_valid(package)
        warnings.extend(validation.warnings)

        logger.info(
            f"Built package with {fitting}/{requested} segment(s), "
            f"{len(stream)} stream bytes, {package.size} archive bytes"
        )
        return ConcatenationResult(
            package=package,
            requested_segments=requested,
            included_segments=fitting,
            validation=validation,
            warnings=warnings,
        )

    # =========================================================================
    # STREAM
    # =========================================================================

    def _rendered_size(self, segments: List[Segment], count: int) -> int:
        included = segments[:count]
        size = len(_banner(included).encode("utf-8"))
        for index, segment in enumerate(included, start=1):
            size += segment.size
            size += len(_begin_marker(index, count, segment.job_id))
            size += len(_end_marker(index, count, segment.job_id))
        return size

    def _fitting_count(self, segments: List[Segment]) -> int:
        """Largest prefix of segments whose rendered stream fits the ceiling."""
        if self._rendered_size(segments, len(segments)) <= self.max_output_bytes:
            return len(segments)

        low, high = 0, len(segments) - 1
        while low < high:
            middle = (low + high + 1) // 2
            if self._rendered_size(segments, middle) <= self.max_output_bytes:
                low = middle
            else:
                high = middle - 1
        return low

    @staticmethod
    def _render(segments: List[Segment], deadline: Deadline) -> str:
        total = len(segments)
        parts = [_banner(segments)]
        for index, segment in enumerate(segments, start=1):
            deadline.check("concatenation")
            parts.append(_begin_marker(index, total, segment.job_id))
            parts.append(segment.gcode)
            parts.append(_end_marker(index, total, segment.job_id))
        return "".join(parts)

    # =========================================================================
    # PACKAGE ENTRIES
    # =========================================================================

    def _clone_entries(
        self,
        base: PackageContents,
        stream: bytes,
        checksum: str,
        summary: PackageSummary,
        segment_count: int,
    ) -> Dict[str, bytes]:
        entries = dict(base.entries)
        gcode_entry = base.gcode_entry
        entries[gcode_entry] = stream

        checksum_entry = f"{gcode_entry}.md5"
        if checksum_entry in entries:
            entries[checksum_entry] = checksum.encode("ascii")

        if gcode_entry.lower().endswith(".gcode"):
            plate_entry = gcode_entry[: -len(".gcode")] + ".json"
            if plate_entry in entries:
                entries[plate_entry] = self._update_plate_json(entries[plate_entry], summary, segment_count)

        if SLICE_INFO_ENTRY in entries:
            entries[SLICE_INFO_ENTRY] = self._update_slice_info(entries[SLICE_INFO_ENTRY], summary)

        return entries

    @staticmethod
    def _update_plate_json(content: bytes, summary: PackageSummary, segment_count: int) -> bytes:
        try:
            plate = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            # Left untouched; the validator reports it
            return content
        if not isinstance(plate, dict):
            return content

        for key in _PLATE_TIME_KEYS:
            if isinstance(plate.get(key), (int, float)):
                plate[key] = round(summary.total_time * 60) if key == "prediction" else round(summary.total_time, 2)
        for key in _PLATE_WEIGHT_KEYS:
            if isinstance(plate.get(key), (int, float)):
                plate[key] = round(summary.total_material, 2)

        plate["concatenated_segments"] = segment_count
        plate["concatenated_sources"] = list(OrderedDict.fromkeys(summary.original_files))
        return json.dumps(plate, indent=4, sort_keys=True).encode("utf-8")

    @staticmethod
    def _update_slice_info(content: bytes, summary: PackageSummary) -> bytes:
        text = content.decode("utf-8", errors="replace")
        replacements = {
            "prediction": str(round(summary.total_time * 60)),
            "weight": f"{summary.total_material:.2f}",
        }
        for key, value in replacements.items():
            pattern = re.compile(_SLICE_INFO_VALUE_RE.format(key=key))
            text = pattern.sub(lambda m, v=value: m.group(1) + v + m.group(3), text)
        return text.encode("utf-8")
