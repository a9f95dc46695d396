"""
Unit tests for the ConcatenationEngine.

Covers replication, segment markers, summary figures, the size ceiling,
determinism and validation of the built package.
"""

import hashlib
import json

import pytest

from core.deadline import Deadline
from core.exceptions import OperationTimeoutError, ParseError, RemoteIOError, SizeLimitError, ValidationError
from models.concatenation import ConcatenationCandidate
from modules.concatenation_engine import ConcatenationEngine, compute_checksum
from modules.package_reader import PackageReader
from package_builder import DEFAULT_GCODE, corrupt_deflate


GEAR_GCODE = DEFAULT_GCODE.replace("; total layer number: 10", "; total layer number: 20").replace(
    "; total filament weight [g] : 5.00", "; total filament weight [g] : 8.00"
)

SOURCE_NAMES = {5: "cube.gcode.3mf", 9: "gear.gcode.3mf"}


def make_candidate(job_ids, total_quantity):
    return ConcatenationCandidate(
        order_ids=list(range(1, len(job_ids) + 1)),
        job_ids=list(job_ids),
        printer="X1C",
        material_name="PLA",
        print_settings_name="AUTO",
        total_quantity=total_quantity,
        is_same_gcode=len(job_ids) == 1,
    )


@pytest.fixture
def packages(package_factory):
    return {5: package_factory(), 9: package_factory(gcode=GEAR_GCODE)}


@pytest.fixture
def engine():
    return ConcatenationEngine()


def build(engine, packages, quantities, job_ids=(5,), base_job_id=5, **kwargs):
    return engine.build(
        make_candidate(job_ids, sum(quantities.values())),
        quantities,
        base_job_id,
        packages.__getitem__,
        source_names=SOURCE_NAMES,
        **kwargs
    )


def stream_of(result):
    return result.package.entries["Metadata/plate_1.gcode"].decode("utf-8")


class TestReplication:
    """Tests for segment replication and markers."""

    def test_three_copies(self, engine, packages):
        result = build(engine, packages, {5: 3})
        stream = stream_of(result)

        assert result.requested_segments == 3
        assert result.included_segments == 3
        assert not result.truncated
        assert stream.count("G28") == 3
        assert "; ====== CONCATENATED PACKAGE: 3 SEGMENT(S) ======" in stream
        assert "; source: cube.gcode.3mf x3" in stream
        assert "; ====== SEGMENT 1 OF 3 BEGIN (job 5) ======" in stream
        assert "; ====== SEGMENT 3 OF 3 END (job 5) ======" in stream

    def test_segments_follow_candidate_order(self, engine, packages):
        result = build(engine, packages, {5: 2, 9: 1}, job_ids=(5, 9))
        stream = stream_of(result)

        assert stream.index("SEGMENT 2 OF 3 BEGIN (job 5)") < stream.index("SEGMENT 3 OF 3 BEGIN (job 9)")
        assert "; source: cube.gcode.3mf x2" in stream
        assert "; source: gear.gcode.3mf x1" in stream

    def test_missing_quantity_defaults_to_one(self, engine, packages):
        result = build(engine, packages, {5: 2}, job_ids=(5, 9))

        assert result.included_segments == 3

    def test_zero_quantity_skips_job(self, engine, packages):
        result = build(engine, packages, {5: 0, 9: 2}, job_ids=(5, 9))

        assert result.included_segments == 2
        assert "(job 5)" not in stream_of(result)

    def test_negative_quantity_rejected(self, engine, packages):
        with pytest.raises(ValueError):
            build(engine, packages, {5: -1})

    def test_all_zero_rejected(self, engine, packages):
        with pytest.raises(ValueError):
            build(engine, packages, {5: 0})


class TestSummaryAndEntries:
    """Tests for summary figures and the updated companion entries."""

    def test_summary_totals(self, engine, packages):
        result = build(engine, packages, {5: 2, 9: 1}, job_ids=(5, 9))
        summary = result.summary

        assert summary.original_files == ["cube.gcode.3mf", "cube.gcode.3mf", "gear.gcode.3mf"]
        assert summary.total_layers == 40
        assert summary.total_time == pytest.approx(90.0)
        assert summary.total_material == pytest.approx(18.0)

    def test_checksum_entry_matches_stream(self, engine, packages):
        result = build(engine, packages, {5: 2})
        stream = result.package.entries["Metadata/plate_1.gcode"]
        expected = hashlib.md5(stream).hexdigest()

        assert result.package.entries["Metadata/plate_1.gcode.md5"] == expected.encode("ascii")
        assert result.summary.checksums == {"Metadata/plate_1.gcode": expected}

    def test_plate_json_updated(self, engine, packages):
        result = build(engine, packages, {5: 3})

        plate = json.loads(result.package.entries["Metadata/plate_1.json"])

        assert plate["prediction"] == 5400
        assert plate["weight"] == 15.0
        assert plate["concatenated_segments"] == 3
        assert plate["concatenated_sources"] == ["cube.gcode.3mf"]

    def test_slice_info_updated(self, engine, packages):
        result = build(engine, packages, {5: 3})

        slice_info = result.package.entries["Metadata/slice_info.config"].decode("utf-8")

        assert '<metadata key="prediction" value="5400"/>' in slice_info
        assert '<metadata key="weight" value="15.00"/>' in slice_info

    def test_other_entries_cloned_from_base(self, engine, packages):
        result = build(engine, packages, {5: 2, 9: 1}, job_ids=(5, 9), base_job_id=9)
        base = PackageReader().read_entries(packages[9])

        assert result.package.entries["Metadata/plate_1.png"] == base["Metadata/plate_1.png"]
        assert result.package.names() == list(base)

    def test_archive_bytes_match_entries(self, engine, packages):
        result = build(engine, packages, {5: 2})

        assert PackageReader().read_entries(result.package.data) == result.package.entries
        assert result.validation.is_valid


class TestSizeCeiling:
    """Tests for truncation under max_output_bytes."""

    def _two_segment_size(self, packages):
        result = build(ConcatenationEngine(), packages, {5: 2})
        return len(result.package.entries["Metadata/plate_1.gcode"])

    def test_truncates_to_fitting_prefix(self, packages):
        engine = ConcatenationEngine(max_output_bytes=self._two_segment_size(packages))

        result = build(engine, packages, {5: 3})

        assert result.requested_segments == 3
        assert result.included_segments == 2
        assert result.truncated
        assert any("truncated to 2 of 3" in w for w in result.warnings)
        assert "SEGMENT 2 OF 2 END (job 5)" in stream_of(result)

    def test_fail_on_truncation(self, packages):
        engine = ConcatenationEngine(
            max_output_bytes=self._two_segment_size(packages),
            fail_on_truncation=True,
        )

        with pytest.raises(SizeLimitError) as exc_info:
            build(engine, packages, {5: 3})

        assert exc_info.value.fitting == 2
        assert exc_info.value.requested == 3

    def test_nothing_fits(self, packages):
        engine = ConcatenationEngine(max_output_bytes=10)

        with pytest.raises(SizeLimitError) as exc_info:
            build(engine, packages, {5: 1})

        assert exc_info.value.fitting == 0


class TestDeterminismAndErrors:
    """Tests for byte-identical rebuilds and failure surfaces."""

    def test_same_inputs_same_bytes(self, engine, packages):
        first = build(engine, packages, {5: 2, 9: 1}, job_ids=(5, 9))
        second = build(engine, packages, {5: 2, 9: 1}, job_ids=(5, 9))

        assert first.package.data == second.package.data

    def test_invalid_base_package(self, engine, packages, package_factory):
        packages[5] = package_factory(omit=["3D/3dmodel.model"])

        with pytest.raises(ValidationError) as exc_info:
            build(engine, packages, {5: 2})

        assert "Missing required file: 3D/3dmodel.model" in exc_info.value.errors

    def test_unreadable_package(self, engine, packages):
        packages[9] = b"garbage"

        with pytest.raises(ParseError) as exc_info:
            build(engine, packages, {5: 1, 9: 1}, job_ids=(5, 9))

        assert exc_info.value.details["job_id"] == 9

    def test_corrupt_entry_is_parse_error(self, engine, packages):
        packages[9] = corrupt_deflate(packages[9])

        with pytest.raises(ParseError) as exc_info:
            build(engine, packages, {5: 1, 9: 1}, job_ids=(5, 9))

        assert exc_info.value.details["job_id"] == 9

    def test_storage_failure_passes_through(self, engine, packages):
        def load(job_id):
            if job_id == 9:
                raise RemoteIOError("Storage download failed", path="jobs/gear.gcode.3mf")
            return packages[job_id]

        with pytest.raises(RemoteIOError):
            engine.build(make_candidate((5, 9), 2), {5: 1, 9: 1}, 5, load)

    def test_expired_deadline(self, engine, packages):
        ticks = iter([0.0] + [100.0] * 50)
        deadline = Deadline(5.0, clock=lambda: next(ticks))

        with pytest.raises(OperationTimeoutError):
            build(engine, packages, {5: 2}, deadline=deadline)


class TestChecksum:
    """Tests for compute_checksum()."""

    def test_small_stream_is_plain_md5(self):
        assert compute_checksum(b"G28\n") == hashlib.md5(b"G28\n").hexdigest()

    def test_large_stream_is_sampled(self):
        data = b"G1 X1\n" * 100

        sampled = compute_checksum(data, full_hash_limit=10, sample_bytes=4)

        assert len(sampled) == 32
        assert sampled != hashlib.md5(data).hexdigest()
        assert sampled == compute_checksum(data, full_hash_limit=10, sample_bytes=4)
