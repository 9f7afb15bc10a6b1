"""
Stateful editing on top of the grid engine.

A FloorEditor owns one live grid together with its selection, undo history
and change listeners. Separate editors (e.g. one generating a new building,
one editing a loaded one) never share state. Every mutating action snapshots
the grid before applying its change; an action cancelled by the user leaves
both the grid and the history untouched.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import replace
from typing import Callable, Protocol

from floor_types import (
    BuildingRef,
    Coordinate,
    FloorGridError,
    NothingToUndo,
    PersistenceFailure,
    UnitRecord,
)
from floorgrid import (
    FloorGrid,
    Selection,
    anchor_of,
    build_grid,
    empty_grid,
    export_units,
    import_units,
    map_units,
    merge,
    merged_anchors,
    resize,
    unit_at,
    unmerge,
    update_units,
)
from unit_store import SaveResult, UnitStore

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20

ChangeFn = Callable[[FloorGrid], None]


class UserChoice(Protocol):
    """How the editor asks the user for input."""

    def prompt_text(self, message: str, default: str = "") -> str | None:
        """Ask for a value; None means the user cancelled."""
        ...

    def confirm(self, message: str) -> bool: ...


# =============================================================================
# Undo History
# =============================================================================


class UndoHistory:
    """Bounded stack of grid snapshots; the oldest is evicted past the limit."""

    def __init__(self, limit: int = HISTORY_LIMIT) -> None:
        self._stack: deque[FloorGrid] = deque(maxlen=limit)

    def __len__(self) -> int:
        return len(self._stack)

    @property
    def limit(self) -> int:
        return self._stack.maxlen or 0

    def push(self, grid: FloorGrid) -> None:
        # Grids are immutable, so the stored reference is a full snapshot
        self._stack.append(grid)

    def pop(self) -> FloorGrid:
        if not self._stack:
            raise NothingToUndo("Nothing to undo")
        return self._stack.pop()

    def clear(self) -> None:
        self._stack.clear()


# =============================================================================
# Editor
# =============================================================================


def _is_plain_number(label: str) -> bool:
    return label.strip().isdigit()


def _checked_label(label: str) -> str:
    label = label.strip()
    if not label:
        raise ValueError("Unit label cannot be blank")
    return label


class FloorEditor:
    """One building being edited: live grid, selection, history, listeners."""

    def __init__(self, chooser: UserChoice, history_limit: int = HISTORY_LIMIT) -> None:
        self.chooser = chooser
        self.grid: FloorGrid = empty_grid()
        self.selection = Selection()
        self.history = UndoHistory(history_limit)
        self._listeners: list[ChangeFn] = []

    # -- notifications -------------------------------------------------------

    def subscribe(self, listener: ChangeFn) -> Callable[[], None]:
        """Call listener with the new grid after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.grid)

    def _replace_grid(self, grid: FloorGrid, *, keep_history: bool) -> None:
        if not keep_history:
            self.history.clear()
        self.grid = grid
        self.selection.clear()
        self._notify()

    def _commit(self, grid: FloorGrid, *, clear_selection: bool = True) -> None:
        """Snapshot the current grid, then make grid the live one."""
        self.history.push(self.grid)
        self.grid = grid
        if clear_selection:
            self.selection.clear()
        self._notify()

    # -- grid lifecycle ------------------------------------------------------

    def build(self, max_floor: int, max_line: int) -> None:
        """Start over with a fresh grid. Clears history."""
        self.start(build_grid(max_floor, max_line))

    def start(self, grid: FloorGrid) -> None:
        """Start over from an existing grid. Clears history."""
        self._replace_grid(grid, keep_history=False)

    def load(self, records: list[UnitRecord]) -> None:
        """Replace the grid with a persisted one. The loaded state is the new undo baseline."""
        self._replace_grid(import_units(records), keep_history=False)

    def reset(self) -> None:
        self._replace_grid(empty_grid(), keep_history=False)

    def export(self, site_name: str, dong_name: str) -> list[UnitRecord]:
        return export_units(self.grid, site_name, dong_name)

    def apply_structure_change(self, max_floor: int, max_line: int) -> bool:
        """
        Resize after the user confirms. Units outside the new bounds are
        dropped and every merge is reset. Undoable.
        """
        if not self.chooser.confirm(
            "Changing the structure resets all merges and drops units outside "
            f"{max_floor} floors x {max_line} lines. Continue?"
        ):
            return False
        self._commit(resize(self.grid, max_floor, max_line))
        return True

    def undo(self) -> None:
        """Restore the grid from before the last mutation."""
        self.grid = self.history.pop()
        self.selection.clear()
        logger.debug("undo: %d snapshots left", len(self.history))
        self._notify()

    # -- selection -----------------------------------------------------------

    def begin_selection(self, coord: Coordinate) -> None:
        self.selection.begin(anchor_of(self.grid, coord))

    def extend_selection(self, coord: Coordinate) -> None:
        self.selection.extend(anchor_of(self.grid, coord))

    def select_range(self, start: Coordinate, corner: Coordinate) -> None:
        self.selection.select_range(anchor_of(self.grid, start), anchor_of(self.grid, corner))

    def clear_selection(self) -> None:
        self.selection.clear()

    def selected(self) -> list[Coordinate]:
        return self.selection.coordinates(self.grid)

    def focus(self, coord: Coordinate) -> None:
        """Keep the selection if coord is part of it, otherwise select just coord."""
        anchor = anchor_of(self.grid, coord)
        if anchor not in self.selected():
            self.selection.begin(anchor)

    # -- actions -------------------------------------------------------------

    def merge(self) -> None:
        """
        Merge the selection into one unit.

        Raises:
            InsufficientSelection: If fewer than two units are selected
        """
        self._commit(merge(self.grid, self.selected()))

    def unmerge(self) -> int:
        """Split merged units in the selection. Returns how many were split (0: nothing to do)."""
        targets = merged_anchors(self.grid, self.selected())
        if not targets:
            return 0
        self._commit(unmerge(self.grid, targets))
        return len(targets)

    def rename(self) -> bool:
        """Prompt for a label and give it to every selected unit."""
        coords = self.selected()
        if not coords:
            return False
        current = self.grid.units[coords[0]].ho
        new_name = self.chooser.prompt_text("Rename unit:", current)
        if new_name is None:
            return False
        self._commit(update_units(self.grid, coords, ho=_checked_label(new_name)), clear_selection=False)
        return True

    def rename_at(self, coord: Coordinate) -> bool:
        """Click-to-rename, offered for merged units and units with a non-numeric label."""
        unit = unit_at(self.grid, coord)
        if not unit.is_merged and _is_plain_number(unit.ho):
            return False
        new_name = self.chooser.prompt_text("Rename unit:", unit.ho)
        if new_name is None:
            return False
        self._commit(update_units(self.grid, [unit.anchor], ho=_checked_label(new_name)), clear_selection=False)
        return True

    def set_type(self) -> bool:
        """Prompt for a type (e.g. 84A) and apply it to every selected unit."""
        coords = self.selected()
        if not coords:
            return False
        current = self.grid.units[coords[0]].type
        new_type = self.chooser.prompt_text("Unit type (e.g. 84A):", current)
        if new_type is None:
            return False
        self._commit(update_units(self.grid, coords, type=new_type), clear_selection=False)
        return True

    def toggle_disabled(self) -> bool:
        """Flip is_disabled on each selected unit; disabling clears void."""
        coords = self.selected()
        if not coords:
            return False
        self._commit(
            map_units(
                self.grid,
                coords,
                lambda u: replace(u, is_disabled=not u.is_disabled, is_void=False),
            )
        )
        return True

    def toggle_void(self) -> bool:
        """
        Delete or restore the selection.

        If any selected unit is still in use, confirm and void them all
        (clearing disabled); if all are void already, confirm and restore them.
        """
        coords = self.selected()
        if not coords:
            return False
        if any(not self.grid.units[c].is_void for c in coords):
            if not self.chooser.confirm(f"Mark {len(coords)} selected unit(s) as void?"):
                return False
            new_grid = update_units(self.grid, coords, is_void=True, is_disabled=False)
        else:
            if not self.chooser.confirm(f"Restore {len(coords)} selected unit(s)?"):
                return False
            new_grid = update_units(self.grid, coords, is_void=False)
        self._commit(new_grid)
        return True


# =============================================================================
# Building Session
# =============================================================================


class BuildingSession:
    """
    Ties an editor to a UnitStore: save a new building, or open, overwrite
    and delete an existing one. Records are exported right before each call.
    """

    def __init__(self, editor: FloorEditor, store: UnitStore) -> None:
        self.editor = editor
        self.store = store
        self.site_name = ""
        self.dong = ""

    @property
    def is_open(self) -> bool:
        return bool(self.site_name)

    def list_buildings(self) -> list[BuildingRef]:
        return self.store.load_building_list()

    def open(self, site_name: str, dong: str) -> None:
        records = self.store.load_units(site_name, dong)
        if not records:
            raise PersistenceFailure(f"No units stored for '{site_name}' / '{dong}'")
        self.editor.load(records)
        self.site_name = site_name
        self.dong = dong
        logger.info(
            "opened %s / %s: %d floors x %d lines",
            site_name,
            dong,
            self.editor.grid.max_floor,
            self.editor.grid.max_line,
        )

    def save_new(self, site_name: str, dong: str) -> SaveResult:
        site_name, dong = site_name.strip(), dong.strip()
        if not site_name or not dong:
            raise ValueError("Site name and dong are required")
        records = self._export(site_name, dong)
        if not records:
            raise ValueError("Nothing to save")
        result = self.store.save_units(records)
        logger.info(
            "saved %s / %s: %d saved, %d duplicates",
            site_name,
            dong,
            result.saved,
            result.duplicates,
        )
        return result

    def _export(self, site_name: str, dong: str) -> list[UnitRecord]:
        """
        Export the grid for storing.

        Raises:
            ValueError: If two units share a label, since the store keys
                records by unique_id and would keep only one of them
        """
        records = self.editor.export(site_name, dong)
        counts = Counter(r.unit.ho for r in records)
        clashes = sorted(label for label, n in counts.items() if n > 1)
        if clashes:
            raise ValueError(
                "Unit labels must be unique within a building; rename the units labelled "
                + ", ".join(repr(label) for label in clashes)
            )
        return records

    def _require_open(self) -> None:
        if not self.is_open:
            raise FloorGridError("Open a building first")

    def overwrite(self) -> bool:
        self._require_open()
        records = self._export(self.site_name, self.dong)
        if not self.editor.chooser.confirm(f"Overwrite '{self.site_name}' / '{self.dong}' with the current grid?"):
            return False
        self.store.update_units(records)
        return True

    def delete(self) -> bool:
        self._require_open()
        if not self.editor.chooser.confirm(f"Permanently delete '{self.site_name}' / '{self.dong}'?"):
            return False
        self.store.delete_building(self.site_name, self.dong)
        self.site_name = ""
        self.dong = ""
        self.editor.reset()
        return True
