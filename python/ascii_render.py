"""
ASCII rendering for floor grids.

Draws the grid top floor first with box characters. A merged unit is drawn as
one box across its whole span, void units are left blank, disabled units are
shown in brackets. Colours come from simple_chalk and can be switched off for
plain output.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

import simple_chalk as chalk  # type: ignore[import-untyped]

from floor_types import Coordinate, Unit
from floorgrid import FloorGrid

logger = logging.getLogger(__name__)

Colorizer = Callable[[str], str]

# (up, down, left, right) -> junction character
JUNCTIONS: dict[tuple[bool, bool, bool, bool], str] = {
    (False, False, False, False): " ",
    (True, True, False, False): "│",
    (True, False, False, False): "│",
    (False, True, False, False): "│",
    (False, False, True, True): "─",
    (False, False, True, False): "─",
    (False, False, False, True): "─",
    (False, True, False, True): "┌",
    (False, True, True, False): "┐",
    (True, False, False, True): "└",
    (True, False, True, False): "┘",
    (True, True, False, True): "├",
    (True, True, True, False): "┤",
    (False, True, True, True): "┬",
    (True, False, True, True): "┴",
    (True, True, True, True): "┼",
}


def _plain(s: str) -> str:
    return s


def unit_text(unit: Unit) -> str:
    """Text shown for a unit. Void units keep their label but render blank."""
    if unit.is_void:
        return ""
    if unit.is_disabled:
        return f"[{unit.ho}]"
    return unit.ho


def _unit_colorizer(unit: Unit) -> Colorizer:
    if unit.is_disabled:
        return chalk.red
    if unit.is_merged:
        return chalk.cyan
    if unit.type:
        return chalk.green
    return chalk.white


def render_floor_grid(
    grid: FloorGrid,
    cell_width: int = 5,
    cursor: Coordinate | None = None,
    selected: Iterable[Coordinate] = (),
    colorize: bool = True,
) -> str:
    """
    Render a floor grid as box-drawn text.

    Args:
        grid: The grid to render
        cell_width: Characters inside each 1x1 cell (default 5)
        cursor: Optional coordinate to highlight as the cursor; the whole unit
            covering it is highlighted
        selected: Anchor coordinates to highlight as selected
        colorize: Apply simple_chalk colours (default True)

    Returns:
        Rendered string, one line per text row
    """
    if grid.is_empty:
        return "(empty grid)"

    F, L = grid.max_floor, grid.max_line
    cw = cell_width
    selected = set(selected)
    cursor_anchor = grid.owners.get(cursor) if cursor is not None else None

    def owner(r: int, c: int) -> Coordinate:
        # r counts text rows of cells from the top, c counts lines from the left
        return grid.owners[Coordinate(F - r, c + 1)]

    # Vertical wall left of cell column k on cell row r (k == L is the right edge)
    vwall = [
        [k == 0 or k == L or owner(r, k - 1) != owner(r, k) for k in range(L + 1)]
        for r in range(F)
    ]
    # Horizontal wall above cell row j in cell column c (j == F is the bottom edge)
    hwall = [
        [j == 0 or j == F or owner(j - 1, c) != owner(j, c) for c in range(L)]
        for j in range(F + 1)
    ]

    height = 2 * F + 1
    width = L * (cw + 1) + 1
    buffer: list[list[str]] = [[" " for _ in range(width)] for _ in range(height)]

    for j in range(F + 1):
        for k in range(L + 1):
            up = j > 0 and vwall[j - 1][k]
            down = j < F and vwall[j][k]
            left = k > 0 and hwall[j][k - 1]
            right = k < L and hwall[j][k]
            buffer[2 * j][k * (cw + 1)] = JUNCTIONS[(up, down, left, right)]
            if k < L and hwall[j][k]:
                for x in range(cw):
                    buffer[2 * j][k * (cw + 1) + 1 + x] = "─"
    for r in range(F):
        for k in range(L + 1):
            if vwall[r][k]:
                buffer[2 * r + 1][k * (cw + 1)] = "│"

    for anchor, unit in grid.units.items():
        top = 2 * (F - anchor.floor) + 1
        bottom = 2 * (F - unit.bottom_floor) + 1
        x0 = (anchor.line - 1) * (cw + 1) + 1
        span_width = unit.col_span * (cw + 1) - 1

        if not colorize:
            colorize_fn: Colorizer = _plain
        elif anchor == cursor_anchor:
            colorize_fn = chalk.bgWhite.red
        elif anchor in selected:
            colorize_fn = chalk.bgWhite.black
        else:
            colorize_fn = _unit_colorizer(unit)

        text = unit_text(unit)[:span_width].center(span_width)
        text_row = (top + bottom) // 2
        for y in range(top, bottom + 1):
            for x in range(span_width):
                ch = text[x] if y == text_row else buffer[y][x0 + x]
                buffer[y][x0 + x] = colorize_fn(ch)

    gutter = len(str(F)) + 2
    lines: list[str] = []
    for y, row in enumerate(buffer):
        if y % 2 == 1:
            floor = F - (y - 1) // 2
            prefix = f"{floor}F".rjust(gutter - 1) + " "
        else:
            prefix = " " * gutter
        lines.append(prefix + "".join(row))

    logger.debug("render_floor_grid: %d x %d grid, %d text rows", F, L, len(lines))
    return "\n".join(lines)


def render_summary(grid: FloorGrid) -> str:
    """One-line description: dimensions and unit counts."""
    units = list(grid.units.values())
    merged = sum(1 for u in units if u.is_merged)
    void = sum(1 for u in units if u.is_void)
    disabled = sum(1 for u in units if u.is_disabled)
    return (
        f"{grid.max_floor} floors x {grid.max_line} lines, "
        f"{len(units)} units ({merged} merged, {void} void, {disabled} disabled)"
    )
