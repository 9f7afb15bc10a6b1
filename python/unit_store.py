"""
Persistence interface for building unit lists, and an in-memory implementation.

The remote store de-duplicates by unique_id. MemoryUnitStore follows the same
policy so sessions can run offline and tests can pin the contract down:
save_units skips (never overwrites) a record whose unique_id already exists,
update_units replaces every building present in the batch wholesale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from floor_types import BuildingRef, PersistenceFailure, UnitRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveResult:
    """Outcome of save_units: records written, and records skipped as duplicates."""

    saved: int
    duplicates: int = 0


class UnitStore(Protocol):
    """What the editor needs from a persistence backend."""

    def load_building_list(self) -> list[BuildingRef]: ...

    def load_units(self, site_name: str, dong: str) -> list[UnitRecord]: ...

    def save_units(self, records: list[UnitRecord]) -> SaveResult: ...

    def update_units(self, records: list[UnitRecord]) -> None: ...

    def delete_building(self, site_name: str, dong: str) -> None: ...


class MemoryUnitStore:
    """UnitStore kept in process memory, keyed by unique_id in insertion order."""

    def __init__(self, records: Iterable[UnitRecord] = ()) -> None:
        self._records: dict[str, UnitRecord] = {}
        self.save_units(list(records))

    def __len__(self) -> int:
        return len(self._records)

    def load_building_list(self) -> list[BuildingRef]:
        seen: dict[BuildingRef, None] = {}
        for record in self._records.values():
            seen.setdefault(BuildingRef(record.site_name, record.dong_name), None)
        return list(seen)

    def load_units(self, site_name: str, dong: str) -> list[UnitRecord]:
        return [
            r
            for r in self._records.values()
            if r.site_name == site_name and r.dong_name == dong
        ]

    def save_units(self, records: list[UnitRecord]) -> SaveResult:
        saved = 0
        duplicates = 0
        for record in records:
            if record.unique_id in self._records:
                duplicates += 1
                continue
            self._records[record.unique_id] = record
            saved += 1
        if duplicates:
            logger.info("save_units: skipped %d duplicate unique_ids", duplicates)
        return SaveResult(saved, duplicates)

    def update_units(self, records: list[UnitRecord]) -> None:
        buildings = {(r.site_name, r.dong_name) for r in records}
        if not buildings:
            raise PersistenceFailure("Nothing to update")
        self._records = {
            uid: r
            for uid, r in self._records.items()
            if (r.site_name, r.dong_name) not in buildings
        }
        for record in records:
            self._records[record.unique_id] = record

    def delete_building(self, site_name: str, dong: str) -> None:
        before = len(self._records)
        self._records = {
            uid: r
            for uid, r in self._records.items()
            if not (r.site_name == site_name and r.dong_name == dong)
        }
        if len(self._records) == before:
            raise PersistenceFailure(f"No building '{site_name}' / '{dong}' to delete")
