"""
Floor-plan grid engine.

A FloorGrid is an immutable snapshot of one building's layout: a rectangle of
floors x lines, every coordinate covered by exactly one unit. A merged unit
covers more than one coordinate; every coordinate other than its anchor is
absorbed and resolves to the owning anchor. Operations return new grids and
leave their input unchanged, so a grid can be kept as an undo snapshot as is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Iterator, Mapping

from floor_types import (
    Coordinate,
    CoordinateOutOfBounds,
    InsufficientSelection,
    InvalidDimensions,
    Unit,
    UnitRecord,
)

logger = logging.getLogger(__name__)

# Fields that define the geometry of a unit; only merge/unmerge/resize touch them
GEOMETRY_FIELDS = frozenset({"floor", "line", "row_span", "col_span"})

# Inclusive (min_floor, max_floor, min_line, max_line)
Rect = tuple[int, int, int, int]


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class FloorGrid:
    """
    One building's layout.

    units maps each anchor coordinate to its unit. owners maps every coordinate
    of the rectangle (anchors included) to the anchor of the unit covering it.
    """

    max_floor: int
    max_line: int
    units: Mapping[Coordinate, Unit]
    owners: Mapping[Coordinate, Coordinate]

    @property
    def size(self) -> int:
        return self.max_floor * self.max_line

    @property
    def is_empty(self) -> bool:
        return not self.units

    def __contains__(self, coord: object) -> bool:
        return (
            isinstance(coord, Coordinate)
            and 1 <= coord.floor <= self.max_floor
            and 1 <= coord.line <= self.max_line
        )


def empty_grid() -> FloorGrid:
    return FloorGrid(0, 0, {}, {})


def _assemble(max_floor: int, max_line: int, units: Iterable[Unit]) -> FloorGrid:
    """Index units that are already known to tile the rectangle."""
    anchors: dict[Coordinate, Unit] = {}
    owners: dict[Coordinate, Coordinate] = {}
    for unit in units:
        anchors[unit.anchor] = unit
        for cell in unit.cells():
            owners[cell] = unit.anchor
    return FloorGrid(max_floor, max_line, anchors, owners)


def _check_dimensions(max_floor: int, max_line: int) -> None:
    if max_floor < 1 or max_line < 1:
        raise InvalidDimensions(
            f"A grid needs at least one floor and one line (got {max_floor} x {max_line})"
        )


def _rect_of(unit: Unit) -> Rect:
    return (unit.bottom_floor, unit.floor, unit.line, unit.right_line)


def _inside(rect: Rect, coord: Coordinate) -> bool:
    min_f, max_f, min_l, max_l = rect
    return min_f <= coord.floor <= max_f and min_l <= coord.line <= max_l


def _overlaps(a: Rect, b: Rect) -> bool:
    return a[0] <= b[1] and b[0] <= a[1] and a[2] <= b[3] and b[2] <= a[3]


# =============================================================================
# Building and Rebuilding
# =============================================================================


def build_grid(max_floor: int, max_line: int) -> FloorGrid:
    """
    Create a fresh grid where every coordinate is an independent default unit.

    Raises:
        InvalidDimensions: If either dimension is below 1
    """
    _check_dimensions(max_floor, max_line)
    grid = _assemble(
        max_floor,
        max_line,
        (
            Unit.default(f, l)
            for f in range(max_floor, 0, -1)
            for l in range(1, max_line + 1)
        ),
    )
    logger.info("build_grid: %d floors x %d lines", max_floor, max_line)
    return grid


def rebuild_from(units: Iterable[Unit]) -> FloorGrid:
    """
    Reconstruct a grid from persisted units.

    The grid is sized to hold every unit's anchor and span. Each unit claims
    its whole span, so coordinates covered by a span but absent from the input
    are absorbed rather than lost. Larger units are placed first; a record
    colliding with an already placed unit is a stale absorbed record and is
    dropped. A coordinate nobody covers is filled with a default unit.

    Args:
        units: Units as loaded from persistence, in any order

    Returns:
        The reconstructed grid (an empty grid for an empty input)

    Raises:
        CoordinateOutOfBounds: If a unit sits below floor 1 / line 1, has a
            non-positive span, or spans below floor 1
    """
    units = list(units)
    if not units:
        return empty_grid()

    for unit in units:
        if unit.floor < 1 or unit.line < 1 or unit.row_span < 1 or unit.col_span < 1:
            raise CoordinateOutOfBounds(
                f"Unit '{unit.ho}' has invalid anchor ({unit.floor}, {unit.line}) "
                f"or span {unit.row_span} x {unit.col_span}"
            )
        if unit.bottom_floor < 1:
            raise CoordinateOutOfBounds(
                f"Unit '{unit.ho}' at ({unit.floor}, {unit.line}) spans "
                f"{unit.row_span} floors, below floor 1"
            )

    max_floor = max(u.floor for u in units)
    max_line = max(u.right_line for u in units)

    placed: list[Unit] = []
    owners: dict[Coordinate, Coordinate] = {}
    by_area = sorted(units, key=lambda u: (-(u.row_span * u.col_span), -u.floor, u.line))
    for unit in by_area:
        cells = list(unit.cells())
        taken = next((c for c in cells if c in owners), None)
        if taken is not None:
            logger.warning(
                "rebuild_from: dropping '%s' at (%d, %d), overlaps unit anchored at (%d, %d)",
                unit.ho,
                unit.floor,
                unit.line,
                owners[taken].floor,
                owners[taken].line,
            )
            continue
        placed.append(unit)
        for cell in cells:
            owners[cell] = unit.anchor

    for f in range(max_floor, 0, -1):
        for l in range(1, max_line + 1):
            coord = Coordinate(f, l)
            if coord not in owners:
                logger.warning("rebuild_from: no unit covers (%d, %d), using a default unit", f, l)
                placed.append(Unit.default(f, l))
                owners[coord] = coord

    logger.info(
        "rebuild_from: %d floors x %d lines from %d units (%d placed)",
        max_floor,
        max_line,
        len(units),
        len(placed),
    )
    return _assemble(max_floor, max_line, placed)


def resize(grid: FloorGrid, new_max_floor: int, new_max_line: int) -> FloorGrid:
    """
    Rebuild the grid at a new size, keeping what still fits.

    Units whose anchor falls outside the new bounds are dropped. Every merge
    is reset to 1x1, since a span laid out against the old bounds cannot be
    trusted against the new ones. Surviving anchors keep their label, type,
    flags, status and memo. This is lossy; callers confirm it with the user.

    Raises:
        InvalidDimensions: If either new dimension is below 1
    """
    _check_dimensions(new_max_floor, new_max_line)
    survivors = {
        anchor: unit
        for anchor, unit in grid.units.items()
        if anchor.floor <= new_max_floor and anchor.line <= new_max_line
    }
    merges_reset = sum(1 for unit in grid.units.values() if unit.is_merged)

    units: list[Unit] = []
    for f in range(new_max_floor, 0, -1):
        for l in range(1, new_max_line + 1):
            prior = survivors.get(Coordinate(f, l))
            if prior is None:
                units.append(Unit.default(f, l))
            else:
                units.append(replace(prior, row_span=1, col_span=1))

    logger.info(
        "resize: %d x %d -> %d x %d, dropped %d units, reset %d merges",
        grid.max_floor,
        grid.max_line,
        new_max_floor,
        new_max_line,
        len(grid.units) - len(survivors),
        merges_reset,
    )
    return _assemble(new_max_floor, new_max_line, units)


# =============================================================================
# Queries
# =============================================================================


def anchor_of(grid: FloorGrid, coord: Coordinate) -> Coordinate:
    """
    Anchor of the unit covering a coordinate.

    Raises:
        CoordinateOutOfBounds: If the coordinate is outside the grid
    """
    try:
        return grid.owners[coord]
    except KeyError:
        raise CoordinateOutOfBounds(
            f"({coord.floor}, {coord.line}) is outside the "
            f"{grid.max_floor} x {grid.max_line} grid"
        ) from None


def unit_at(grid: FloorGrid, coord: Coordinate) -> Unit:
    """The unit occupying a coordinate, resolving absorbed coordinates to their owner."""
    return grid.units[anchor_of(grid, coord)]


def is_anchor(grid: FloorGrid, coord: Coordinate) -> bool:
    return coord in grid.units


def anchors(grid: FloorGrid) -> list[Coordinate]:
    """All anchor coordinates in display order: top floor first, then left to right."""
    return sorted(grid.units, key=lambda c: (-c.floor, c.line))


def rows(grid: FloorGrid) -> Iterator[tuple[int, list[Coordinate]]]:
    """Yield (floor, coordinates) from the top floor down."""
    for f in range(grid.max_floor, 0, -1):
        yield f, [Coordinate(f, l) for l in range(1, grid.max_line + 1)]


def validate_grid(grid: FloorGrid) -> None:
    """
    Check that every coordinate is covered by exactly one unit.

    Raises:
        CoordinateOutOfBounds: On any gap, overlap or out-of-bounds span
    """
    seen: dict[Coordinate, Coordinate] = {}
    for anchor, unit in grid.units.items():
        if anchor != unit.anchor:
            raise CoordinateOutOfBounds(f"Unit '{unit.ho}' is indexed at {anchor} but anchored at {unit.anchor}")
        for cell in unit.cells():
            if cell not in grid:
                raise CoordinateOutOfBounds(f"Unit '{unit.ho}' spans {cell}, outside the grid")
            if cell in seen:
                raise CoordinateOutOfBounds(f"{cell} is covered by both {seen[cell]} and {anchor}")
            if grid.owners.get(cell) != anchor:
                raise CoordinateOutOfBounds(f"{cell} is not indexed to its owner {anchor}")
            seen[cell] = anchor
    if len(seen) != grid.size or len(grid.owners) != grid.size:
        missing = [c for _, coords in rows(grid) for c in coords if c not in seen]
        raise CoordinateOutOfBounds(f"Coordinates not covered by any unit: {missing[:5]}")


# =============================================================================
# Selection
# =============================================================================


@dataclass
class Selection:
    """
    A single rectangular selection between a start coordinate and a corner.

    Dragging in any direction gives the same rectangle; only anchor cells of
    visible units inside it are selected, so a drag never selects part of a
    merged block through one of its absorbed coordinates.
    """

    start: Coordinate | None = None
    corner: Coordinate | None = None

    def begin(self, coord: Coordinate) -> None:
        self.start = coord
        self.corner = coord

    def extend(self, coord: Coordinate) -> None:
        if self.start is None:
            self.begin(coord)
        else:
            self.corner = coord

    def select_range(self, start: Coordinate, corner: Coordinate) -> None:
        self.start = start
        self.corner = corner

    def clear(self) -> None:
        self.start = None
        self.corner = None

    @property
    def is_empty(self) -> bool:
        return self.start is None

    def bounds(self) -> Rect | None:
        if self.start is None or self.corner is None:
            return None
        return (
            min(self.start.floor, self.corner.floor),
            max(self.start.floor, self.corner.floor),
            min(self.start.line, self.corner.line),
            max(self.start.line, self.corner.line),
        )

    def coordinates(self, grid: FloorGrid) -> list[Coordinate]:
        """Selected anchor coordinates, top floor first then left to right."""
        rect = self.bounds()
        if rect is None:
            return []
        return [c for c in anchors(grid) if _inside(rect, c)]


# =============================================================================
# Merge / Unmerge
# =============================================================================


def _enclosing_rect(grid: FloorGrid, selected: Iterable[Coordinate]) -> Rect:
    """Bounding box of the selected units, grown until no unit straddles its edge."""
    rects = [_rect_of(grid.units[a]) for a in selected]
    rect = (
        min(r[0] for r in rects),
        max(r[1] for r in rects),
        min(r[2] for r in rects),
        max(r[3] for r in rects),
    )
    changed = True
    while changed:
        changed = False
        for unit in grid.units.values():
            r = _rect_of(unit)
            if _overlaps(rect, r):
                grown = (min(rect[0], r[0]), max(rect[1], r[1]), min(rect[2], r[2]), max(rect[3], r[3]))
                if grown != rect:
                    rect = grown
                    changed = True
    return rect


def merge(grid: FloorGrid, coords: Iterable[Coordinate]) -> FloorGrid:
    """
    Merge the selected units into one unit covering their bounding rectangle.

    The rectangle is computed from floor/line extents, so gaps in the
    selection are merged too. The top-left cell (highest floor, lowest line)
    becomes the anchor and keeps its identity; every other unit inside the
    rectangle is absorbed and its data discarded. Merging over an existing
    merged block dissolves it into the new one.

    Args:
        grid: The current grid
        coords: Selected coordinates (absorbed ones resolve to their owner)

    Returns:
        New grid with the merged unit

    Raises:
        InsufficientSelection: If fewer than two distinct units are selected
    """
    selected = {anchor_of(grid, c) for c in coords}
    if len(selected) < 2:
        raise InsufficientSelection(
            f"Select at least two units to merge (got {len(selected)})"
        )

    rect = _enclosing_rect(grid, selected)
    min_f, max_f, min_l, max_l = rect
    anchor = Coordinate(max_f, min_l)
    head = replace(
        grid.units[anchor],
        row_span=max_f - min_f + 1,
        col_span=max_l - min_l + 1,
    )

    units = {a: u for a, u in grid.units.items() if not _inside(rect, a)}
    units[anchor] = head
    owners = dict(grid.owners)
    for cell in head.cells():
        owners[cell] = anchor

    logger.debug(
        "merge: '%s' at (%d, %d) now spans %d x %d, absorbed %d units",
        head.ho,
        anchor.floor,
        anchor.line,
        head.row_span,
        head.col_span,
        len(grid.units) - len(units),
    )
    return FloorGrid(grid.max_floor, grid.max_line, units, owners)


def merged_anchors(grid: FloorGrid, coords: Iterable[Coordinate]) -> list[Coordinate]:
    """Anchors of the selected units that span more than one coordinate."""
    found = {anchor_of(grid, c) for c in coords}
    return sorted(
        (a for a in found if grid.units[a].is_merged),
        key=lambda c: (-c.floor, c.line),
    )


def unmerge(grid: FloorGrid, coords: Iterable[Coordinate]) -> FloorGrid:
    """
    Split every selected merged unit back into 1x1 units.

    The anchor keeps its identity; every other coordinate of the former span
    gets a fresh default unit (absorbed data is not recovered). Returns the
    grid unchanged if nothing selected is merged.
    """
    targets = merged_anchors(grid, coords)
    if not targets:
        return grid

    units = dict(grid.units)
    owners = dict(grid.owners)
    for anchor in targets:
        head = units[anchor]
        for cell in head.cells():
            if cell != anchor:
                units[cell] = Unit.default(cell.floor, cell.line)
                owners[cell] = cell
        units[anchor] = replace(head, row_span=1, col_span=1)
        logger.debug(
            "unmerge: '%s' at (%d, %d) split into %d units",
            head.ho,
            anchor.floor,
            anchor.line,
            head.row_span * head.col_span,
        )
    return FloorGrid(grid.max_floor, grid.max_line, units, owners)


# =============================================================================
# Attribute Edits
# =============================================================================


def map_units(
    grid: FloorGrid, coords: Iterable[Coordinate], fn: Callable[[Unit], Unit]
) -> FloorGrid:
    """Replace each selected unit with fn(unit). Geometry must not change."""
    targets = {anchor_of(grid, c) for c in coords}
    if not targets:
        return grid
    units = dict(grid.units)
    for anchor in targets:
        new_unit = fn(units[anchor])
        if _rect_of(new_unit) != _rect_of(units[anchor]):
            raise ValueError(f"Editing '{new_unit.ho}' must not change its position or span")
        units[anchor] = new_unit
    return FloorGrid(grid.max_floor, grid.max_line, units, grid.owners)


def update_units(grid: FloorGrid, coords: Iterable[Coordinate], **changes: Any) -> FloorGrid:
    """
    Set attributes (ho, type, is_void, is_disabled, status, memo) on selected units.

    Raises:
        ValueError: If a geometry field is passed
    """
    forbidden = GEOMETRY_FIELDS & changes.keys()
    if forbidden:
        raise ValueError(f"Use merge/unmerge/resize to change {sorted(forbidden)}")
    return map_units(grid, coords, lambda u: replace(u, **changes))


# =============================================================================
# Serialization
# =============================================================================


def export_units(grid: FloorGrid, site_name: str, dong_name: str) -> list[UnitRecord]:
    """One record per anchor in display order; absorbed coordinates emit nothing."""
    return [UnitRecord(site_name, dong_name, grid.units[a]) for a in anchors(grid)]


def import_units(records: Iterable[UnitRecord]) -> FloorGrid:
    """Inverse of export_units."""
    return rebuild_from(r.unit for r in records)
