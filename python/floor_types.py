"""
Shared type definitions for the floorgrid system.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

DEFAULT_STATUS = "before"


# =============================================================================
# Errors
# =============================================================================


class FloorGridError(Exception):
    """Base class for every error raised by the floorgrid core."""


class InvalidDimensions(FloorGridError, ValueError):
    """A grid was requested with a non-positive number of floors or lines."""


class InsufficientSelection(FloorGridError):
    """A merge was requested with fewer than two selected units."""


class NothingToUndo(FloorGridError):
    """Undo was requested with an empty history."""


class CoordinateOutOfBounds(FloorGridError, IndexError):
    """A coordinate or span falls outside the grid (internal consistency violation)."""


class PersistenceFailure(FloorGridError):
    """The persistence collaborator failed; carries a user-displayable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# =============================================================================
# Coordinates and Units
# =============================================================================


@dataclass(frozen=True, order=True)
class Coordinate:
    """A grid position. Floors count bottom-up, lines left to right, both from 1."""

    floor: int
    line: int


def default_label(floor: int, line: int) -> str:
    """Default unit label: floor followed by the line zero-padded to two digits."""
    return f"{floor}{line:02d}"


@dataclass(frozen=True)
class Unit:
    """
    An occupying unit of the grid.

    floor/line address the anchor (top-left) cell. The unit spans row_span
    floors downward and col_span lines rightward from there.
    """

    floor: int
    line: int
    ho: str
    type: str = ""
    row_span: int = 1
    col_span: int = 1
    is_void: bool = False
    is_disabled: bool = False
    status: str = DEFAULT_STATUS
    memo: str = ""

    @staticmethod
    def default(floor: int, line: int) -> Unit:
        return Unit(floor, line, default_label(floor, line))

    @property
    def anchor(self) -> Coordinate:
        return Coordinate(self.floor, self.line)

    @property
    def is_merged(self) -> bool:
        return self.row_span > 1 or self.col_span > 1

    @property
    def bottom_floor(self) -> int:
        return self.floor - self.row_span + 1

    @property
    def right_line(self) -> int:
        return self.line + self.col_span - 1

    def cells(self) -> Iterator[Coordinate]:
        """Every coordinate this unit occupies, anchor first."""
        for f in range(self.floor, self.bottom_floor - 1, -1):
            for l in range(self.line, self.right_line + 1):
                yield Coordinate(f, l)


# =============================================================================
# Persisted Records
# =============================================================================


def make_unique_id(site_name: str, dong_name: str, ho: str) -> str:
    """De-duplication key used by the persistence layer."""
    return f"{site_name}_{dong_name}_{ho}"


def _as_int(value: Any, default: int) -> int:
    # Spreadsheet cells come back as numbers, numeric strings or blanks
    if value is None or value == "":
        return default
    return int(float(value))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "y", "yes")
    return bool(value)


@dataclass(frozen=True)
class UnitRecord:
    """A unit as persisted for one building (site_name + dong_name)."""

    site_name: str
    dong_name: str
    unit: Unit

    @property
    def unique_id(self) -> str:
        return make_unique_id(self.site_name, self.dong_name, self.unit.ho)

    @staticmethod
    def from_dict(d: dict) -> UnitRecord:
        floor = _as_int(d["floor"], 0)
        line = _as_int(d["line"], 0)
        ho = d.get("ho")
        return UnitRecord(
            site_name=str(d.get("site_name", "")),
            dong_name=str(d.get("dong", "")),
            unit=Unit(
                floor=floor,
                line=line,
                ho=default_label(floor, line) if ho in (None, "") else str(ho),
                type=str(d.get("type") or ""),
                row_span=_as_int(d.get("row_span"), 1),
                col_span=_as_int(d.get("col_span"), 1),
                is_void=_as_bool(d.get("is_void", False)),
                is_disabled=_as_bool(d.get("is_disabled", False)),
                status=str(d.get("status") or DEFAULT_STATUS),
                memo=str(d.get("memo") or ""),
            ),
        )

    def to_dict(self) -> dict:
        u = self.unit
        return {
            "site_name": self.site_name,
            "unique_id": self.unique_id,
            "dong": self.dong_name,
            "floor": u.floor,
            "line": u.line,
            "ho": u.ho,
            "type": u.type,
            "row_span": u.row_span,
            "col_span": u.col_span,
            "is_void": u.is_void,
            "is_disabled": u.is_disabled,
            "status": u.status,
            "memo": u.memo,
        }


@dataclass(frozen=True, order=True)
class BuildingRef:
    """Identifies one building (dong) within a site."""

    site_name: str
    dong: str

    @staticmethod
    def from_dict(d: dict) -> BuildingRef:
        return BuildingRef(str(d["site_name"]), str(d["dong"]))

    def to_dict(self) -> dict:
        return {"site_name": self.site_name, "dong": self.dong}
