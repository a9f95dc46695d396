"""
Unit tests for the PackageReader.

Tests G-code/metadata location strategies and archive error handling.
"""

import pytest

from core.exceptions import ParseError
from modules.package_reader import PackageReader, summarize_entries, write_archive
from package_builder import DEFAULT_GCODE, corrupt_deflate, set_compression_method, zip_entries


SNIFFABLE = "; custom stream\nG28\nG1 X10 Y10 F3000\nG1 X20 Y20 E1\n"


@pytest.fixture
def reader():
    return PackageReader()


class TestGcodeLocation:
    """Tests for locating the machine-code entry."""

    def test_full_package_uses_plate_1(self, reader, package_factory):
        """A complete package reads its stream from Metadata/plate_1.gcode."""
        contents = reader.read(package_factory())

        assert contents.gcode_entry == "Metadata/plate_1.gcode"
        assert contents.gcode == DEFAULT_GCODE

    def test_lowest_plate_wins(self, reader):
        """With several plates the lowest plate number is chosen."""
        data = zip_entries({
            "Metadata/plate_3.gcode": b"G28\n",
            "Metadata/plate_2.gcode": b"G28\nG1 X1\n",
        })

        assert reader.read(data).gcode_entry == "Metadata/plate_2.gcode"

    def test_conventional_top_level_name(self, reader):
        data = zip_entries({"readme.txt": b"hello", "model.gcode": b"G28\n"})

        assert reader.read(data).gcode_entry == "model.gcode"

    def test_any_gcode_extension(self, reader):
        data = zip_entries({"output/part.GCODE": b"G28\n"})

        assert reader.read(data).gcode_entry == "output/part.GCODE"

    def test_content_sniffing(self, reader):
        """An entry without the extension is found by its commands."""
        data = zip_entries({"notes.txt": b"just text", "stream.bin": SNIFFABLE.encode()})

        contents = reader.read(data)

        assert contents.gcode_entry == "stream.bin"
        assert "G28" in contents.gcode

    def test_single_command_is_not_gcode(self, reader):
        """Sniffing requires at least two command lines."""
        data = zip_entries({"stream.bin": b"G28\nhello world\n"})

        with pytest.raises(ParseError) as exc_info:
            reader.read(data, source="jobs/x.3mf")

        assert "No G-code entry" in exc_info.value.message
        assert exc_info.value.source == "jobs/x.3mf"


class TestMetadataLocation:
    """Tests for locating the metadata entry."""

    def test_structured_model_first(self, reader, package_factory):
        contents = reader.read(package_factory())

        assert contents.metadata_entry == "3D/3dmodel.model"
        assert b"BambuStudio" in contents.metadata_raw

    def test_json_metadata(self, reader):
        data = zip_entries({"model.gcode": b"G28\n", "metadata.json": b'{"printer_model": "MK4"}'})

        contents = reader.read(data)

        assert contents.metadata_entry == "metadata.json"

    def test_metadata_by_name_and_content(self, reader):
        data = zip_entries({
            "model.gcode": b"G28\n",
            "extra/print_config.ini": b"not json, not xml",
            "extra/slicer_settings.json": b'{"printer_model": "MK4"}',
        })

        assert reader.read(data).metadata_entry == "extra/slicer_settings.json"

    def test_missing_metadata_is_allowed(self, reader):
        contents = reader.read(zip_entries({"model.gcode": b"G28\n"}))

        assert contents.metadata_entry is None
        assert contents.metadata_raw == b""

    def test_auxiliary_files_exclude_located_entries(self, reader, package_factory):
        contents = reader.read(package_factory())

        assert "Metadata/plate_1.gcode" not in contents.auxiliary_files
        assert "3D/3dmodel.model" not in contents.auxiliary_files
        assert "Metadata/slice_info.config" in contents.auxiliary_files
        assert len(contents.entries) == 12


class TestArchiveErrors:
    """Tests for unreadable and oversized archives."""

    def test_not_a_zip(self, reader):
        with pytest.raises(ParseError) as exc_info:
            reader.read(b"definitely not a zip archive")

        assert "Not a ZIP archive" in exc_info.value.message

    def test_size_cap(self, package_factory):
        reader = PackageReader(max_bytes=100)

        with pytest.raises(ParseError) as exc_info:
            reader.read(package_factory(), source="big.gcode.3mf")

        assert exc_info.value.details["limit_bytes"] == 100

    def test_corrupt_deflate_stream(self, reader, package_factory):
        data = corrupt_deflate(package_factory())

        with pytest.raises(ParseError) as exc_info:
            reader.read(data, source="broken.gcode.3mf")

        assert "could not be decompressed" in exc_info.value.message
        assert exc_info.value.source == "broken.gcode.3mf"

    def test_unsupported_compression_method(self, reader, package_factory):
        data = set_compression_method(package_factory(), "Metadata/plate_1.gcode", 99)

        with pytest.raises(ParseError):
            reader.read(data)


class TestWriteArchive:
    """Tests for deterministic archive serialization."""

    def test_identical_entries_identical_bytes(self):
        entries = {"b.txt": b"second", "a.txt": b"first"}

        assert write_archive(entries) == write_archive(dict(entries))

    def test_explicit_order_is_kept(self, reader):
        entries = {"b.txt": b"second", "a.txt": b"first"}

        data = write_archive(entries, order=["a.txt", "b.txt"])

        assert list(reader.read_entries(data)) == ["a.txt", "b.txt"]

    def test_summarize_entries(self):
        assert summarize_entries({"a": b"123", "b": b""}) == [("a", 3), ("b", 0)]
