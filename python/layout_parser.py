"""
Text notation for floor grids.

Used for fixtures, demos and debugging dumps: a whole building fits on a line,
e.g. "PH < <|^ ^ ^|101 _ !103" is a 3-line building whose top two floors are
one penthouse.
"""

from __future__ import annotations

from dataclasses import replace

from floor_types import Unit, default_label
from floorgrid import FloorGrid, rebuild_from, rows

__all__ = ["parse_layout", "format_layout"]

ABOVE = "^"
LEFT = "<"
VOID = "_"
DISABLED = "!"


def _split_rows(definition: str) -> list[list[str]]:
    row_strings = [
        part
        for line in definition.strip().splitlines()
        for part in line.split("|")
    ]
    return [row.split() for row in row_strings if row.strip()]


def _parse_anchor(token: str, floor: int, line: int) -> Unit:
    """Decode an anchor token: optional '_'/'!' prefixes, a label, and an optional ':type'."""
    is_void = False
    is_disabled = False
    rest = token
    while rest and rest[0] in (VOID, DISABLED):
        if rest[0] == VOID:
            is_void = True
        else:
            is_disabled = True
        rest = rest[1:]
    label, _, unit_type = rest.partition(":")
    return Unit(
        floor=floor,
        line=line,
        ho=label or default_label(floor, line),
        type=unit_type,
        is_void=is_void,
        is_disabled=is_disabled,
    )


def parse_layout(definition: str) -> FloorGrid:
    """
    Parse a floor grid from its text notation.

    Format:
    - Rows are floors, top floor first, separated by | or newlines
    - Cells are separated by whitespace; every row has the same number of cells
    - Cell tokens:
      * A label ("101", "PH"): a unit anchored here with that label
      * label:type ("101:84A"): a unit with a type
      * '_' prefix: void unit ("_" alone keeps the default label)
      * '!' prefix: disabled unit ("!103")
      * '^': absorbed into the unit covering the cell above
      * '<': absorbed into the unit covering the cell to the left
    - Cells absorbed into a unit must form a rectangle with the anchor at its
      top-left

    Example:
        "PH < <|^ ^ ^|101 _ !103"
        Creates a 3 x 3 grid: floors 3-2 are one unit "PH" spanning 2 x 3,
        floor 1 has "101", a void "102" and a disabled "103".

    Args:
        definition: The layout text

    Returns:
        The parsed grid

    Raises:
        ValueError: On ragged rows, dangling '^'/'<' or non-rectangular merges
    """
    table = _split_rows(definition)
    if not table:
        raise ValueError("Empty layout definition")

    cols = len(table[0])
    mismatched = [(i, len(row)) for i, row in enumerate(table) if len(row) != cols]
    if mismatched:
        error_msg = (
            f"Inconsistent row lengths in layout\n"
            f"  Expected: {cols} cells (from the top row)\n"
            f"  Mismatched rows:\n"
        )
        for row_idx, actual in mismatched:
            error_msg += f"    Row {row_idx}: {actual} cells - \"{' '.join(table[row_idx])}\"\n"
        error_msg += "  All rows must have the same number of cells"
        raise ValueError(error_msg)

    max_floor = len(table)
    owner: dict[tuple[int, int], tuple[int, int]] = {}
    claimed: dict[tuple[int, int], list[tuple[int, int]]] = {}
    heads: dict[tuple[int, int], Unit] = {}

    for r, row in enumerate(table):
        for c, token in enumerate(row):
            if token == ABOVE:
                if r == 0:
                    raise ValueError(
                        f"'^' in the top row has nothing above it\n"
                        f"  Row {r}, cell {c}: \"{' '.join(row)}\""
                    )
                head = owner[(r - 1, c)]
            elif token == LEFT:
                if c == 0:
                    raise ValueError(
                        f"'<' in the first cell has nothing to its left\n"
                        f"  Row {r}, cell {c}: \"{' '.join(row)}\""
                    )
                head = owner[(r, c - 1)]
            else:
                head = (r, c)
                heads[head] = _parse_anchor(token, max_floor - r, c + 1)
            owner[(r, c)] = head
            claimed.setdefault(head, []).append((r, c))

    units: list[Unit] = []
    for head, cells in claimed.items():
        rs = [r for r, _ in cells]
        cs = [c for _, c in cells]
        height = max(rs) - min(rs) + 1
        width = max(cs) - min(cs) + 1
        if len(cells) != height * width or (min(rs), min(cs)) != head:
            raise ValueError(
                f"Merged unit '{heads[head].ho}' is not a rectangle\n"
                f"  Anchor: row {head[0]}, cell {head[1]}\n"
                f"  Covers {len(cells)} cells inside a {height} x {width} box\n"
                f"  Use '^' and '<' so the absorbed cells fill the box exactly"
            )
        units.append(replace(heads[head], row_span=height, col_span=width))

    return rebuild_from(units)


def _format_anchor(unit: Unit) -> str:
    prefix = (VOID if unit.is_void else "") + (DISABLED if unit.is_disabled else "")
    label = unit.ho
    if unit.is_void and label == default_label(unit.floor, unit.line):
        label = ""
    token = prefix + label
    if unit.type:
        token += ":" + unit.type
    return token


def format_layout(grid: FloorGrid) -> str:
    """
    Write a grid in the notation parse_layout reads, one floor per line.

    Labels and types must not contain whitespace, '|' or ':' for the output to
    parse back to the same grid.
    """
    lines: list[str] = []
    for _, coords in rows(grid):
        tokens: list[str] = []
        for coord in coords:
            anchor = grid.owners[coord]
            if anchor == coord:
                tokens.append(_format_anchor(grid.units[coord]))
            elif anchor.line < coord.line:
                tokens.append(LEFT)
            else:
                tokens.append(ABOVE)
        lines.append(" ".join(tokens))
    return "\n".join(lines)

