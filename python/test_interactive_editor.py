"""
Tests for the interactive editor's key handling and command line.

Keys are fed straight into handle_key, so no terminal or Live display is needed.
"""

import io

import pytest
from readchar import key
from rich.console import Console

from floor_config import Settings
from floor_editor import BuildingSession, FloorEditor
from floor_types import Coordinate, FloorGridError
from floorgrid import build_grid
from interactive_editor import InteractiveEditor, main, open_store
from sheet_api import SheetUnitStore
from test_floor_editor import ScriptedChoice
from unit_store import MemoryUnitStore

C = Coordinate


def make_app(
    floors: int = 3,
    lines: int = 2,
    answers: list[str | None] | None = None,
    confirms: list[bool] | None = None,
    with_session: bool = True,
) -> InteractiveEditor:
    editor = FloorEditor(ScriptedChoice(answers, confirms))
    if floors and lines:
        editor.build(floors, lines)
    session = BuildingSession(editor, MemoryUnitStore()) if with_session else None
    return InteractiveEditor(editor, session, Console(file=io.StringIO()))


def press(app: InteractiveEditor, *keys: str) -> None:
    for k in keys:
        assert app.handle_key(k)


class TestKeyHandling:
    """Tests for handle_key."""

    def test_cursor_starts_top_left(self) -> None:
        """The cursor starts on the top floor, first line."""
        assert make_app().cursor == C(3, 1)

    def test_cursor_clamped(self) -> None:
        """The cursor never leaves the grid."""
        app = make_app()
        press(app, key.UP, key.LEFT, key.RIGHT, key.RIGHT, key.RIGHT)
        assert app.cursor == C(3, 2)

    def test_drag_and_merge(self) -> None:
        """space, move, space selects a rectangle; m merges it."""
        app = make_app()
        press(app, " ", key.DOWN, key.RIGHT, " ")
        assert app.status_message == "Selected 4 unit(s)"
        press(app, "m")
        head = app.editor.grid.units[C(3, 1)]
        assert (head.row_span, head.col_span) == (2, 2)
        assert app.status_message == "✓ Merged"

    def test_undo(self) -> None:
        """z undoes the last change."""
        app = make_app()
        press(app, " ", key.DOWN, " ", "m", "z")
        assert app.editor.grid == build_grid(3, 2)

    def test_action_on_cursor_outside_selection(self) -> None:
        """With the cursor outside the selection, actions apply to the cursor unit."""
        app = make_app()
        press(app, " ", key.RIGHT, " ", key.DOWN, key.DOWN, "x")
        assert app.editor.grid.units[C(1, 2)].is_disabled
        assert not app.editor.grid.units[C(3, 1)].is_disabled

    def test_toggle_disabled_status(self) -> None:
        """x reports the toggle it applied."""
        app = make_app()
        press(app, "x")
        assert app.status_message == "✓ Toggled disabled"
        assert app.editor.grid.units[C(3, 1)].is_disabled

    def test_nothing_to_unmerge(self) -> None:
        """u on a plain unit reports that nothing was unmerged."""
        app = make_app()
        press(app, "u")
        assert app.status_message == "Nothing to unmerge"
        assert len(app.editor.history) == 0

    def test_enter_renames_merged_unit(self) -> None:
        """enter on a merged unit prompts for its label."""
        app = make_app(answers=["PH"])
        press(app, " ", key.RIGHT, " ", "m", key.ENTER)
        assert app.editor.grid.units[C(3, 1)].ho == "PH"
        assert app.status_message == "✓ Renamed"

    def test_rename_cancelled(self) -> None:
        """A cancelled rename is reported and changes nothing."""
        app = make_app(answers=[None])
        press(app, "n")
        assert app.status_message == "Rename cancelled"
        assert app.editor.grid == build_grid(3, 2)

    def test_void_declined(self) -> None:
        """Declining the void confirmation cancels it."""
        app = make_app(confirms=[False])
        press(app, "v")
        assert app.status_message == "Cancelled"

    def test_escape_clears_selection(self) -> None:
        """esc drops the selection and stops dragging."""
        app = make_app()
        press(app, " ", key.DOWN, key.ESC)
        assert app.editor.selected() == []
        assert not app.marking

    def test_change_structure(self) -> None:
        """g resizes after confirmation and keeps the cursor inside."""
        app = make_app(answers=["2", "2"], confirms=[True])
        press(app, "g")
        assert (app.editor.grid.max_floor, app.editor.grid.max_line) == (2, 2)
        assert app.cursor == C(2, 1)

    def test_empty_grid_only_allows_create(self) -> None:
        """On an empty grid, g creates a new grid and other actions are refused."""
        app = make_app(0, 0, answers=["2", "3"])
        press(app, "m")
        assert app.status_message == "Empty grid: press g to create one"
        press(app, "g")
        assert (app.editor.grid.max_floor, app.editor.grid.max_line) == (2, 3)
        assert app.status_message == "Created 2 x 3 grid"

    def test_save_new(self) -> None:
        """s asks for site and dong and saves every unit."""
        app = make_app(answers=["S", "101"])
        press(app, "s")
        assert app.status_message == "Saved 6 unit(s), 0 duplicate(s) skipped"

    def test_overwrite_without_storage(self) -> None:
        """Storage commands need a session."""
        app = make_app(with_session=False)
        with pytest.raises(FloorGridError, match="No storage configured"):
            app.handle_key("o")

    def test_unknown_key(self) -> None:
        """Unknown keys are reported in the status line."""
        app = make_app()
        press(app, "?")
        assert app.status_message == "Unknown key: '?'"

    def test_quit(self) -> None:
        """q stops the loop."""
        assert not make_app().handle_key("q")

    def test_display(self) -> None:
        """The panel shows the grid, cursor details and status."""
        app = make_app()
        press(app, "?")
        console = Console(file=io.StringIO(), width=100)
        console.print(app.generate_display())
        output = console.file.getvalue()
        assert "Floor Grid" in output
        assert "(3, 1) -> '301'" in output
        assert "Unknown key" in output


class TestMain:
    """Tests for the command line entry point."""

    @pytest.fixture(autouse=True)
    def offline(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLOORGRID_SHEET_URL", "")

    def test_show(self, capsys: pytest.CaptureFixture[str]) -> None:
        """show renders a layout and exits."""
        assert main(["show", "PH <|101 102"]) == 0
        out = capsys.readouterr().out
        assert "PH" in out
        assert "2 floors x 2 lines" in out

    def test_show_invalid_layout(self, capsys: pytest.CaptureFixture[str]) -> None:
        """An invalid layout is reported with a non-zero exit status."""
        assert main(["show", "^ 1"]) == 1
        assert "in the top row" in capsys.readouterr().out

    def test_list_offline(self) -> None:
        """Without a web-app URL the store is empty and list prints nothing."""
        assert main(["list"]) == 0

    def test_edit_missing_building(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Opening a building that is not stored fails before the editor starts."""
        assert main(["edit", "--site", "S", "--dong", "1"]) == 1
        assert "No units stored" in capsys.readouterr().out


class TestOpenStore:
    """Tests for choosing and releasing the unit store."""

    def test_offline_store(self) -> None:
        """Without a web-app URL the store lives in memory."""
        with open_store(Settings()) as store:
            assert isinstance(store, MemoryUnitStore)

    def test_web_app_client_closed(self) -> None:
        """The web-app HTTP client is closed when the session ends."""
        with open_store(Settings(sheet_url="https://script.example.test/exec")) as store:
            assert isinstance(store, SheetUnitStore)
            client = store.api._client
            assert not client.is_closed
        assert client.is_closed

    def test_client_closed_on_error(self) -> None:
        """The client is closed even when the session fails."""
        with pytest.raises(FloorGridError):
            with open_store(Settings(sheet_url="https://script.example.test/exec")) as store:
                client = store.api._client
                raise FloorGridError("boom")
        assert client.is_closed
