"""
Interactive terminal editor for floor grids.
Display a building's grid and edit it with keyboard commands.
"""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator

import readchar
from readchar import key
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.text import Text

from ascii_render import render_floor_grid, render_summary
from floor_config import Settings, load_settings
from floor_editor import BuildingSession, FloorEditor
from floor_types import Coordinate, FloorGridError
from layout_parser import parse_layout
from sheet_api import SheetAPI, SheetUnitStore
from unit_store import MemoryUnitStore, UnitStore

logger = logging.getLogger(__name__)

MOVES = {
    key.UP: (1, 0),
    key.DOWN: (-1, 0),
    key.LEFT: (0, -1),
    key.RIGHT: (0, 1),
}

# Keys whose action may ask the user something
PROMPTING_KEYS = set("ntvgsoD") | {key.ENTER, key.CR}

# Keys acting on the selection, or on the cursor cell if it lies outside it
FOCUS_KEYS = {"m", "u", "n", "t", "x", "v"}

HELP = [
    ("arrows", "Move cursor"),
    ("space", "Start / finish drag selection"),
    ("esc", "Clear selection"),
    ("m / u", "Merge / unmerge"),
    ("n / enter", "Rename selection / rename merged unit"),
    ("t", "Set type"),
    ("x", "Toggle disabled"),
    ("v", "Void / restore"),
    ("z", "Undo"),
    ("g", "Change structure (floors x lines)"),
    ("s / o / D", "Save new / overwrite / delete building"),
    ("q", "Quit"),
]


class RichUserChoice:
    """User-choice prompts on the terminal. Ctrl-C or Ctrl-D cancels."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def prompt_text(self, message: str, default: str = "") -> str | None:
        try:
            return Prompt.ask(message, default=default, console=self.console)
        except (KeyboardInterrupt, EOFError):
            return None

    def confirm(self, message: str) -> bool:
        try:
            return Confirm.ask(message, default=False, console=self.console)
        except (KeyboardInterrupt, EOFError):
            return False


class InteractiveEditor:
    """Keyboard-driven editing of one building."""

    def __init__(
        self,
        editor: FloorEditor,
        session: BuildingSession | None = None,
        console: Console | None = None,
    ) -> None:
        self.editor = editor
        self.session = session
        self.console = console or Console()
        self.cursor = Coordinate(max(editor.grid.max_floor, 1), 1)
        self.marking = False
        self.status_message = "Ready"
        editor.subscribe(lambda _grid: self._clamp_cursor())

    def _clamp_cursor(self) -> None:
        grid = self.editor.grid
        self.cursor = Coordinate(
            min(max(self.cursor.floor, 1), max(grid.max_floor, 1)),
            min(max(self.cursor.line, 1), max(grid.max_line, 1)),
        )

    def generate_display(self) -> Panel:
        """Generate the current display with grid and status."""
        grid = self.editor.grid
        title = "Floor Grid"
        if self.session is not None and self.session.is_open:
            title += f" - {self.session.site_name} / {self.session.dong}"

        status = Text()
        status.append(render_summary(grid) + "\n\n", style="bold")
        grid_text = render_floor_grid(
            grid,
            cursor=self.cursor if self.cursor in grid else None,
            selected=self.editor.selected(),
        )
        status.append(Text.from_ansi(grid_text))
        status.append("\n\n")
        if self.cursor in grid:
            unit = grid.units[grid.owners[self.cursor]]
            status.append("Cursor: ", style="bold")
            status.append(
                f"({self.cursor.floor}, {self.cursor.line}) -> '{unit.ho}'"
                f" type={unit.type or '-'} span={unit.row_span}x{unit.col_span}\n"
            )
        status.append("Selection: ", style="bold")
        status.append(f"{len(self.editor.selected())} unit(s)")
        status.append(" (dragging)\n" if self.marking else "\n")
        status.append("Undo: ", style="bold")
        status.append(f"{len(self.editor.history)}/{self.editor.history.limit}\n\n")

        status.append("Keys:\n", style="bold cyan")
        for keys, description in HELP:
            status.append(f"  {keys:<10} {description}\n")
        status.append("\n")

        status.append("─" * 40 + "\n", style="dim")
        status.append("Status: ", style="bold")
        status.append(self.status_message)

        return Panel(status, title=title, border_style="green")

    # -- commands ------------------------------------------------------------

    def move(self, d_floor: int, d_line: int) -> None:
        self.cursor = Coordinate(self.cursor.floor + d_floor, self.cursor.line + d_line)
        self._clamp_cursor()
        if self.marking:
            self.editor.extend_selection(self.cursor)

    def toggle_marking(self) -> None:
        if self.marking:
            self.marking = False
            self.status_message = f"Selected {len(self.editor.selected())} unit(s)"
        else:
            self.editor.begin_selection(self.cursor)
            self.marking = True
            self.status_message = "Dragging: move to extend, space to finish"

    def change_structure(self) -> None:
        floors = self.editor.chooser.prompt_text("Floors:", str(self.editor.grid.max_floor))
        if floors is None:
            return
        lines = self.editor.chooser.prompt_text("Lines:", str(self.editor.grid.max_line))
        if lines is None:
            return
        if self.editor.grid.is_empty:
            self.editor.build(int(floors), int(lines))
            self.status_message = f"Created {floors} x {lines} grid"
        elif self.editor.apply_structure_change(int(floors), int(lines)):
            self.status_message = "Structure changed (out-of-range units dropped, merges reset)"

    def save_new(self) -> None:
        session = self._require_session()
        chooser = self.editor.chooser
        site = chooser.prompt_text("Site name:", session.site_name)
        if site is None:
            return
        dong = chooser.prompt_text("Dong:", session.dong)
        if dong is None:
            return
        result = session.save_new(site, dong)
        self.status_message = f"Saved {result.saved} unit(s), {result.duplicates} duplicate(s) skipped"

    def _require_session(self) -> BuildingSession:
        if self.session is None:
            raise FloorGridError("No storage configured")
        return self.session

    def handle_key(self, k: str) -> bool:
        """
        Apply one key press.

        Returns:
            False when the editor should quit, True otherwise
        """
        editor = self.editor
        if k == "q":
            self.status_message = "Quitting..."
            return False
        if k in MOVES:
            self.move(*MOVES[k])
            return True

        if editor.grid.is_empty and k not in ("g", "z"):
            self.status_message = "Empty grid: press g to create one"
            return True

        if k == " ":
            self.toggle_marking()
            return True
        if k == key.ESC:
            editor.clear_selection()
            self.marking = False
            self.status_message = "Selection cleared"
            return True

        if k in FOCUS_KEYS:
            editor.focus(self.cursor)
            self.marking = False

        if k == "m":
            editor.merge()
            self.status_message = "✓ Merged"
        elif k == "u":
            count = editor.unmerge()
            self.status_message = f"✓ Unmerged {count} unit(s)" if count else "Nothing to unmerge"
        elif k == "n":
            self.status_message = "✓ Renamed" if editor.rename() else "Rename cancelled"
        elif k in (key.ENTER, key.CR):
            if editor.rename_at(self.cursor):
                self.status_message = "✓ Renamed"
        elif k == "t":
            self.status_message = "✓ Type set" if editor.set_type() else "Type unchanged"
        elif k == "x":
            self.status_message = "✓ Toggled disabled" if editor.toggle_disabled() else "Nothing selected"
        elif k == "v":
            self.status_message = "✓ Void toggled" if editor.toggle_void() else "Cancelled"
        elif k == "z":
            editor.undo()
            self.status_message = "✓ Undone"
        elif k == "g":
            self.change_structure()
        elif k == "s":
            self.save_new()
        elif k == "o":
            if self._require_session().overwrite():
                self.status_message = "✓ Building overwritten"
        elif k == "D":
            if self._require_session().delete():
                self.status_message = "✓ Building deleted"
        else:
            self.status_message = f"Unknown key: {repr(k)}"
        return True

    def run(self) -> None:
        """Run the interactive editor until q is pressed."""
        with Live(self.generate_display(), console=self.console, refresh_per_second=4) as live:
            try:
                while True:
                    live.update(self.generate_display())
                    k = readchar.readkey()
                    prompting = k in PROMPTING_KEYS
                    if prompting:
                        live.stop()
                    try:
                        keep_going = self.handle_key(k)
                    except (FloorGridError, ValueError) as e:
                        self.status_message = f"✗ {e}"
                        keep_going = True
                    finally:
                        if prompting:
                            live.start()
                    if not keep_going:
                        live.update(self.generate_display())
                        break
            except KeyboardInterrupt:
                self.status_message = "Interrupted by user"
                live.update(self.generate_display())


# =============================================================================
# Command Line
# =============================================================================


@contextmanager
def open_store(settings: Settings) -> Iterator[UnitStore]:
    """Yield the configured store; the web-app client is closed on exit."""
    if settings.offline:
        logger.warning("FLOORGRID_SHEET_URL is not set; saving to memory for this session only")
        yield MemoryUnitStore()
        return
    with SheetAPI(settings.sheet_url, timeout=settings.sheet_timeout) as api:
        yield SheetUnitStore(api)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="floorgrid", description="Floor-plan grid editor")
    parser.add_argument("--url", help="spreadsheet web-app URL (overrides FLOORGRID_SHEET_URL)")
    parser.add_argument("--log-level", help="logging level (overrides FLOORGRID_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", help="lay out a new building")
    new.add_argument("--floors", type=int, default=0)
    new.add_argument("--lines", type=int, default=0)
    new.add_argument("--layout", help="start from a layout in text notation")

    edit = sub.add_parser("edit", help="edit a stored building")
    edit.add_argument("--site", required=True)
    edit.add_argument("--dong", required=True)

    sub.add_parser("list", help="list stored buildings")

    show = sub.add_parser("show", help="render a layout in text notation and exit")
    show.add_argument("layout")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    settings = replace(
        settings,
        sheet_url=args.url or settings.sheet_url,
        log_level=args.log_level or settings.log_level,
    )
    logging.basicConfig(level=settings.log_level_value, format="%(levelname)s: %(message)s")

    console = Console()
    if args.command == "show":
        try:
            grid = parse_layout(args.layout)
        except ValueError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            return 1
        console.print(Text.from_ansi(render_floor_grid(grid)))
        console.print(render_summary(grid))
        return 0

    with open_store(settings) as store:
        return run_session(args, store, console)


def run_session(args: argparse.Namespace, store: UnitStore, console: Console) -> int:
    editor = FloorEditor(RichUserChoice(console))
    session = BuildingSession(editor, store)

    try:
        if args.command == "list":
            for building in session.list_buildings():
                console.print(f"[{building.site_name}] {building.dong}", markup=False)
            return 0
        if args.command == "edit":
            session.open(args.site, args.dong)
        elif args.layout:
            editor.start(parse_layout(args.layout))
        elif args.floors > 0 and args.lines > 0:
            editor.build(args.floors, args.lines)
    except (FloorGridError, ValueError) as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        return 1

    InteractiveEditor(editor, session, console).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
