from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping

"""Component category mapping.

Raw "type" text from the sheet is mapped to a category used for template
assignment. Lookup order: project aliases, exact table entry, whole-word
table pattern found in the text, keyword containment, then MISC.
"""

__all__ = [
    "ComponentTypeMapper",
    "CATEGORIES",
    "MISC",
    "FIELD_WELD",
]

logger = logging.getLogger(__name__)

MISC = "MISC"
FIELD_WELD = "FIELD_WELD"
CATEGORIES = (
    "VALVE", "SUPPORT", "GASKET", "FITTING", "FLANGE", "INSTRUMENT", "PIPE", "SPOOL", FIELD_WELD, MISC,
)

TYPE_MAPPINGS: dict[str, str] = {
    # valves
    "VALVE": "VALVE",
    "VLV": "VALVE",
    "GATE VALVE": "VALVE",
    "GATE VLV": "VALVE",
    "GLOBE VALVE": "VALVE",
    "CHECK VALVE": "VALVE",
    "CHECK VLV": "VALVE",
    "BALL VALVE": "VALVE",
    "BUTTERFLY VALVE": "VALVE",
    "NEEDLE VALVE": "VALVE",
    "RELIEF VALVE": "VALVE",
    "CONTROL VALVE": "VALVE",
    "3-WAY VALVE": "VALVE",
    "GATE": "VALVE",
    "GLOBE": "VALVE",
    "CHECK": "VALVE",
    "BALL": "VALVE",
    # supports
    "SUPPORT": "SUPPORT",
    "SUPP": "SUPPORT",
    "PIPE SUPPORT": "SUPPORT",
    "HANGER": "SUPPORT",
    "SPRING HANGER": "SUPPORT",
    "GUIDE": "SUPPORT",
    "ANCHOR": "SUPPORT",
    "SHOE": "SUPPORT",
    "CLAMP": "SUPPORT",
    "U-BOLT": "SUPPORT",
    "TRUNNION": "SUPPORT",
    "RESTRAINT": "SUPPORT",
    "SLIDE": "SUPPORT",
    "STOP": "SUPPORT",
    # gaskets
    "GASKET": "GASKET",
    "GSKT": "GASKET",
    "GMG": "GASKET",
    "SPIRAL WOUND": "GASKET",
    "RING GASKET": "GASKET",
    "RTJ": "GASKET",
    "RF GASKET": "GASKET",
    "FACING": "GASKET",
    # fittings
    "FITTING": "FITTING",
    "ELBOW": "FITTING",
    "ELL": "FITTING",
    "90 ELBOW": "FITTING",
    "45 ELBOW": "FITTING",
    "TEE": "FITTING",
    "REDUCING TEE": "FITTING",
    "REDUCER": "FITTING",
    "COUPLING": "FITTING",
    "UNION": "FITTING",
    "CAP": "FITTING",
    "PLUG": "FITTING",
    "NIPPLE": "FITTING",
    "CROSS": "FITTING",
    "WELDOLET": "FITTING",
    "THREADOLET": "FITTING",
    "SOCKOLET": "FITTING",
    "OLET": "FITTING",
    # flanges
    "FLANGE": "FLANGE",
    "FLG": "FLANGE",
    "BLIND FLANGE": "FLANGE",
    "BLIND": "FLANGE",
    "WELD NECK": "FLANGE",
    "WN FLANGE": "FLANGE",
    "SLIP ON": "FLANGE",
    "SO FLANGE": "FLANGE",
    "LAP JOINT": "FLANGE",
    "ORIFICE FLANGE": "FLANGE",
    "SPECTACLE BLIND": "FLANGE",
    # instruments
    "INSTRUMENT": "INSTRUMENT",
    "INST": "INSTRUMENT",
    "PSV": "INSTRUMENT",
    "PRV": "INSTRUMENT",
    "GAUGE": "INSTRUMENT",
    "PI": "INSTRUMENT",
    "TI": "INSTRUMENT",
    "FI": "INSTRUMENT",
    "LI": "INSTRUMENT",
    "TRANSMITTER": "INSTRUMENT",
    "SWITCH": "INSTRUMENT",
    "INDICATOR": "INSTRUMENT",
    # pipe / spools
    "PIPE": "PIPE",
    "PIPING": "PIPE",
    "SPOOL": "SPOOL",
    "PIPE SPOOL": "SPOOL",
    "FABRICATED SPOOL": "SPOOL",
    "FAB SPOOL": "SPOOL",
    # field welds
    "FIELD WELD": FIELD_WELD,
    "FW": FIELD_WELD,
    "WELD": FIELD_WELD,
    "BUTT WELD": FIELD_WELD,
    "SOCKET WELD": FIELD_WELD,
}

# (category, keywords) checked in order after the table
KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("VALVE", ("VALVE", "VLV")),
    ("SUPPORT", ("SUPPORT", "HANG", "CLAMP")),
    ("GASKET", ("GASKET", "GSKT", "SEAL")),
    ("FLANGE", ("FLANGE", "FLG", "BLIND")),
    ("FITTING", ("ELBOW", "TEE", "FITTING", "REDUCER")),
    ("INSTRUMENT", ("INSTRUMENT", "GAUGE", "PSV", "TRANSMITTER")),
    ("SPOOL", ("SPOOL",)),
    ("PIPE", ("PIPE",)),
    (FIELD_WELD, ("WELD",)),
)


def _normalize(text: str) -> str:
    return " ".join(str(text).upper().split())


class ComponentTypeMapper:
    """Maps raw type text to a component category."""

    def __init__(self, aliases: Mapping[str, str] | None = None) -> None:
        self.aliases = {_normalize(k): str(v).upper() for k, v in (aliases or {}).items()}
        self._patterns = [
            (re.compile(rf"(?<![A-Z0-9]){re.escape(pattern)}(?![A-Z0-9])"), category)
            for pattern, category in TYPE_MAPPINGS.items()
        ]

    def map_type(self, raw_type: str | None) -> str:
        if raw_type is None or not str(raw_type).strip():
            return MISC
        normalized = _normalize(raw_type)

        if normalized in self.aliases:
            return self.aliases[normalized]
        if normalized in TYPE_MAPPINGS:
            return TYPE_MAPPINGS[normalized]
        for pattern, category in self._patterns:
            if pattern.search(normalized):
                logger.debug("type %r matched %s via %s", raw_type, category, pattern.pattern)
                return category
        for category, keywords in KEYWORDS:
            if any(k in normalized for k in keywords):
                return category
        logger.debug("unknown type %r -> %s", raw_type, MISC)
        return MISC

    def is_known(self, raw_type: str | None) -> bool:
        return self.map_type(raw_type) != MISC

    def type_counts(self, raw_types: Iterable[str | None]) -> dict[str, int]:
        """Category histogram used by the preview stage."""
        counts = Counter(self.map_type(t) for t in raw_types)
        return {**{category: 0 for category in CATEGORIES}, **counts}
