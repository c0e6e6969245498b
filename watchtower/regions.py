"""
Location to region lookup used for roll-ups.
"""
from typing import Dict, Iterable, Optional, Tuple

UNKNOWN_GROUP = "Unknown"


def normalize_location(location: Optional[str]) -> str:
    return (location or "").strip().lower()


class RegionLookup:
    """
    Read-only mapping of normalized location -> region label.

    When the source table lists a location more than once, the first row
    wins. Locations are matched after trimming and lower-casing.
    """

    def __init__(self, mapping: Optional[Dict[str, str]] = None):
        self._mapping: Dict[str, str] = {}
        for location, region in (mapping or {}).items():
            self._add(location, region)

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[Optional[str], Optional[str]]]) -> "RegionLookup":
        lookup = cls()
        for location, region in rows:
            lookup._add(location, region)
        return lookup

    def _add(self, location: Optional[str], region: Optional[str]) -> None:
        key = normalize_location(location)
        if not key or key in self._mapping:
            return
        label = (region or "").strip()
        self._mapping[key] = label or UNKNOWN_GROUP

    def region_for(self, location: Optional[str]) -> str:
        """Region label for a location, ``Unknown`` when unmapped."""
        return self._mapping.get(normalize_location(location), UNKNOWN_GROUP)

    def __contains__(self, location: object) -> bool:
        return isinstance(location, str) and normalize_location(location) in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    @property
    def regions(self) -> Tuple[str, ...]:
        return tuple(sorted(set(self._mapping.values())))
