"""Package handling modules for the print queue."""

__all__ = [
    "candidate_matcher",
    "concatenation_engine",
    "gcode_stats",
    "job_analyzer",
    "metadata_extractor",
    "package_reader",
    "package_validator",
    "printer_profiles",
]
