"""
In-memory print packages for tests.

``build_entries`` returns every entry of a well-formed single-plate
package; tests drop or replace entries to provoke the case under test.
"""

import hashlib
import io
import json
import zipfile


DEFAULT_GCODE = "\n".join([
    "; HEADER_BLOCK_START",
    "; BambuStudio 01.09.00.70",
    "; total layer number: 10",
    "; total estimated time: 30m 0s",
    "; total filament weight [g] : 5.00",
    "; HEADER_BLOCK_END",
    "G28",
    "G90",
    "M104 S210",
    "M140 S60",
    "G1 X10 Y10 Z0.2 F3000",
    "G1 X20 Y20 E1.0",
    "G1 X30 Y10 E2.0",
    "G1 X10 Y10 E3.0",
    "M104 S0",
    "",
])

MODEL_XML = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<model unit="millimeter" xml:lang="en-US">\n'
    ' <metadata name="Application">BambuStudio-01.09.00.70</metadata>\n'
    ' <metadata name="CreationDate">2024-05-01</metadata>\n'
    ' <metadata name="DesignerUserId">2360007279</metadata>\n'
    '</model>\n'
)

SLICE_INFO = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<config>\n'
    '  <plate>\n'
    '    <metadata key="index" value="1"/>\n'
    '    <metadata key="printer_model_id" value="BL-P001"/>\n'
    '    <metadata key="nozzle_diameters" value="0.4"/>\n'
    '    <metadata key="prediction" value="1800"/>\n'
    '    <metadata key="weight" value="5.00"/>\n'
    '    <filament id="1" type="PLA" color="#FFFFFF" used_m="1.68" used_g="5.00"/>\n'
    '  </plate>\n'
    '</config>\n'
)

PROJECT_SETTINGS = {
    "print_settings_id": "0.20mm Standard AUTO",
    "printer_settings_id": "Bambu Lab X1 Carbon 0.4 nozzle",
    "printer_model": "Bambu Lab X1 Carbon",
    "filament_type": ["PLA"],
    "filament_settings_id": ["Bambu PLA Basic @BBL X1C"],
    "nozzle_diameter": ["0.4"],
}

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def build_entries(gcode=DEFAULT_GCODE):
    """Every entry of a well-formed single-plate package, in archive order."""
    gcode_bytes = gcode.encode("utf-8")
    return {
        "[Content_Types].xml": b'<?xml version="1.0" encoding="UTF-8"?>\n<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types"></Types>',
        "_rels/.rels": b'<?xml version="1.0" encoding="UTF-8"?>\n<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships"></Relationships>',
        "3D/3dmodel.model": MODEL_XML.encode("utf-8"),
        "Metadata/plate_1.gcode": gcode_bytes,
        "Metadata/plate_1.gcode.md5": hashlib.md5(gcode_bytes).hexdigest().encode("ascii"),
        "Metadata/plate_1.json": json.dumps({"prediction": 1800, "weight": 5.0, "nozzle_diameter": 0.4}).encode("utf-8"),
        "Metadata/slice_info.config": SLICE_INFO.encode("utf-8"),
        "Metadata/project_settings.config": json.dumps(PROJECT_SETTINGS).encode("utf-8"),
        "Metadata/model_settings.config": b'<?xml version="1.0" encoding="UTF-8"?>\n<config></config>',
        "Metadata/cut_information.xml": b'<?xml version="1.0" encoding="utf-8"?>\n<objects></objects>',
        "Metadata/plate_1.png": PNG_BYTES,
        "Metadata/plate_1_small.png": PNG_BYTES,
    }


def zip_entries(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def _local_data_span(data, name):
    """(start, length) of an entry's compressed bytes."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(name)
    offset = info.header_offset
    name_length = int.from_bytes(data[offset + 26:offset + 28], "little")
    extra_length = int.from_bytes(data[offset + 28:offset + 30], "little")
    return offset + 30 + name_length + extra_length, info.compress_size


def corrupt_deflate(data, name="Metadata/plate_1.gcode"):
    """Make one entry's deflate stream start with the reserved block type."""
    start, _ = _local_data_span(data, name)
    corrupted = bytearray(data)
    # BFINAL=1, BTYPE=11
    corrupted[start] = 0x07
    return bytes(corrupted)


def set_compression_method(data, name, method):
    """Rewrite an entry's compression method in both of its headers."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        offset = zf.getinfo(name).header_offset
    patched = bytearray(data)
    patched[offset + 8:offset + 10] = method.to_bytes(2, "little")

    encoded = name.encode("utf-8")
    position = patched.find(b"PK\x01\x02")
    while position != -1:
        name_length = int.from_bytes(patched[position + 28:position + 30], "little")
        if bytes(patched[position + 46:position + 46 + name_length]) == encoded:
            patched[position + 10:position + 12] = method.to_bytes(2, "little")
            break
        position = patched.find(b"PK\x01\x02", position + 4)
    return bytes(patched)
