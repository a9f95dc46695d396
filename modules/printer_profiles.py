"""
Printer family registry.

Each vendor the core knows about is one PrinterFamily object that answers
three questions: does this metadata belong to me, what is the display name
for a model id, and what short printer label should a Job carry. Call sites
pick a family with ``detect_family`` and never branch on vendor names
themselves.

Adding a vendor:
    1. Subclass PrinterFamily, set ``tag`` and ``brand``
    2. Override ``tokens`` and, if needed, ``MODEL_PATTERNS``
    3. Register the instance in ``FAMILIES`` ahead of GenericFamily
"""

import re
from typing import Any, Dict, List, Optional, Tuple


class PrinterFamily:
    """Base family: token matching plus pattern-based model labels."""

    tag = "generic"
    brand = ""

    # Lowercase substrings of application/model strings that identify the vendor
    tokens: Tuple[str, ...] = ()

    # Vendor model id -> display name
    MODEL_IDS: Dict[str, str] = {}

    # Ordered (pattern, label); first match wins, so specific names go first
    MODEL_PATTERNS: List[Tuple["re.Pattern[str]", str]] = []

    def matches(self, application: str = "", model: str = "") -> bool:
        haystack = f"{application} {model}".lower()
        return any(token in haystack for token in self.tokens)

    def model_name(self, model_id: Optional[str]) -> Optional[str]:
        if not model_id:
            return None
        return self.MODEL_IDS.get(model_id.strip())

    def label_from_text(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        for pattern, label in self.MODEL_PATTERNS:
            if pattern.search(text):
                return label
        return None

    def printer_identifier(self, metadata: Dict[str, Any]) -> str:
        """
        Short printer label for a Job, e.g. 'X1C'.

        Tries the model id, then the model string, then the printer profile
        name. Empty when nothing identifies the machine.
        """
        by_id = self.model_name(metadata.get("printer_model_id"))
        if by_id:
            return by_id

        for key in ("printer_model", "printer_settings_id"):
            label = self.label_from_text(metadata.get(key))
            if label:
                return label

        return ""

    def __repr__(self):
        return f"<PrinterFamily {self.tag}>"


class BambuLabFamily(PrinterFamily):
    tag = "bambu"
    brand = "Bambu Lab"
    tokens = ("bambu", "bambulab", "bambustudio")

    MODEL_IDS = {
        "BL-P001": "X1C",
        "BL-P002": "X1",
        "C11": "P1P",
        "C12": "P1S",
        "C13": "X1E",
        "N1": "A1 mini",
        "N2S": "A1",
        "O1D": "H2D",
    }

    MODEL_PATTERNS = [
        (re.compile(r"\ba1\s*mini\b", re.I), "A1 mini"),
        (re.compile(r"\ba1\b", re.I), "A1"),
        (re.compile(r"\bp1s\b", re.I), "P1S"),
        (re.compile(r"\bp1p\b", re.I), "P1P"),
        (re.compile(r"\bx1e\b", re.I), "X1E"),
        (re.compile(r"\bx1\s*carbon\b|\bx1c\b", re.I), "X1C"),
        (re.compile(r"\bx1\b", re.I), "X1"),
        (re.compile(r"\bh2[-_]?d\b", re.I), "H2D"),
        (re.compile(r"\bh2[-_]?s\b", re.I), "H2S"),
    ]

    def matches(self, application: str = "", model: str = "") -> bool:
        if super().matches(application, model):
            return True
        # Bare model strings such as "X1 Carbon" or an id such as "BL-P001"
        return bool(self.model_name(model) or self.label_from_text(model))


class PrusaFamily(PrinterFamily):
    tag = "prusa"
    brand = "Prusa Research"
    tokens = ("prusa", "prusaslicer", "original prusa")

    MODEL_PATTERNS = [
        (re.compile(r"\bcore\s*one\b", re.I), "CORE One"),
        (re.compile(r"\bmk4s\b", re.I), "MK4S"),
        (re.compile(r"\bmk4\b", re.I), "MK4"),
        (re.compile(r"\bmk3\.?9\b", re.I), "MK3.9"),
        (re.compile(r"\bmk3s\+?", re.I), "MK3S"),
        (re.compile(r"\bmini\+?\b", re.I), "MINI"),
        (re.compile(r"\bxl\b", re.I), "XL"),
    ]


class CrealityFamily(PrinterFamily):
    tag = "creality"
    brand = "Creality"
    tokens = ("creality", "ender", "crealityprint")

    MODEL_PATTERNS = [
        (re.compile(r"\bk1\s*max\b", re.I), "K1 Max"),
        (re.compile(r"\bk1c\b", re.I), "K1C"),
        (re.compile(r"\bk1\b", re.I), "K1"),
        (re.compile(r"\bender[- ]?3\s*v3\b", re.I), "Ender-3 V3"),
        (re.compile(r"\bender[- ]?3\s*s1\b", re.I), "Ender-3 S1"),
        (re.compile(r"\bender[- ]?3\b", re.I), "Ender-3"),
        (re.compile(r"\bender[- ]?5\b", re.I), "Ender-5"),
    ]


class GenericFamily(PrinterFamily):
    """Fallback: matches everything, labels with the raw model string."""

    tag = "generic"
    brand = ""

    def matches(self, application: str = "", model: str = "") -> bool:
        return True

    def printer_identifier(self, metadata: Dict[str, Any]) -> str:
        for key in ("printer_model", "printer_model_id", "printer_settings_id"):
            value = metadata.get(key)
            if value:
                return str(value).strip()
        return ""


GENERIC = GenericFamily()

FAMILIES: List[PrinterFamily] = [
    BambuLabFamily(),
    PrusaFamily(),
    CrealityFamily(),
    GENERIC,
]

_BY_TAG = {family.tag: family for family in FAMILIES}


def get_family(tag: str) -> PrinterFamily:
    """Family by tag; unknown tags resolve to the generic family."""
    return _BY_TAG.get(tag, GENERIC)


def detect_family(application: Optional[str] = None, model: Optional[str] = None) -> PrinterFamily:
    """First registered family whose tokens appear in the application or model."""
    for family in FAMILIES:
        if family.matches(application or "", model or ""):
            return family
    return GENERIC


def family_for_metadata(metadata: Dict[str, Any]) -> PrinterFamily:
    """
    Family for an extracted metadata record.

    Prefers the brand already recorded, then falls back to detection over
    the application and every model-ish field.
    """
    brand = (metadata.get("printer_brand") or "").lower()
    if brand:
        for family in FAMILIES:
            if family.brand and family.brand.lower() in brand:
                return family

    model_text = " ".join(
        str(metadata.get(key) or "")
        for key in ("printer_model", "printer_model_id", "printer_settings_id")
    )
    return detect_family(metadata.get("application"), model_text)


def printer_identifier(metadata: Dict[str, Any]) -> str:
    """Short printer label derived from metadata, '' when unknown."""
    return family_for_metadata(metadata).printer_identifier(metadata)
