"""
Tests for the command line and the Caster wiring.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from dlnacast import __main__ as cli
from dlnacast.caster import Caster, PlayOptions, UiMode, build_render_spec
from dlnacast.config import Config
from dlnacast.core.playlist import PlaylistEntry
from dlnacast.player.render import ExplicitAddress, First, NameQuery, Render
from dlnacast.player.resolver import ResolutionError, ResolutionErrorKind

RENDER = Render(
    friendly_name="Living Room TV",
    udn="uuid:tv",
    location="http://192.168.1.50:49152/description.xml",
    control_url="http://192.168.1.50:49152/AVTransport/control",
)


class TestParseArgs:
    """Tests for argument parsing."""

    def test_play_defaults(self) -> None:
        args = cli.parse_args(["play", "movie.mp4"])

        assert args.command == "play"
        assert args.path == Path("movie.mp4")
        assert args.port == 9000
        assert args.timeout == 5.0
        assert args.loop is False

        options = cli.play_options(args)
        assert options.ui is UiMode.PLAIN
        assert options.infer_subtitle is True
        assert options.device_url is None

    def test_play_all_options(self) -> None:
        args = cli.parse_args(
            [
                "-t", "2.5",
                "play",
                "-q", "osmc",
                "-H", "192.168.1.10",
                "-P", "9100",
                "-s", "subs.srt",
                "--subtitle-offset", "-1500",
                "--tui",
                "--loop",
                "shows/",
            ]
        )

        options = cli.play_options(args)

        assert options.device_query == "osmc"
        assert options.host == "192.168.1.10"
        assert options.port == 9100
        assert options.subtitle == Path("subs.srt")
        assert options.subtitle_offset_ms == -1500
        assert options.timeout == 2.5
        assert options.loop is True
        assert options.ui is UiMode.TUI

    def test_playlist_alias(self) -> None:
        assert cli.parse_args(["play", "--playlist", "shows/"]).loop is True

    def test_interactive_and_no_subtitle(self) -> None:
        options = cli.play_options(cli.parse_args(["play", "-i", "-n", "movie.mp4"]))

        assert options.ui is UiMode.INTERACTIVE
        assert options.infer_subtitle is False

    @pytest.mark.parametrize(
        "argv",
        [
            ["play", "-q", "tv", "-d", "http://10.0.0.5/d.xml", "movie.mp4"],
            ["play", "-s", "a.srt", "-n", "movie.mp4"],
            ["play", "-i", "--tui", "movie.mp4"],
            ["play", "--subtitle-sync-interval", "0", "movie.mp4"],
            ["play"],
            [],
        ],
    )
    def test_invalid_combinations(self, argv: list[str]) -> None:
        with pytest.raises(SystemExit):
            cli.parse_args(argv)

    def test_subtitle_sync_options(self) -> None:
        defaults = cli.play_options(cli.parse_args(["play", "movie.mp4"]))
        assert defaults.subtitle_sync is False
        assert defaults.subtitle_sync_interval == 0.5

        options = cli.play_options(
            cli.parse_args(["play", "--subtitle-sync", "--subtitle-sync-interval", "250", "movie.mp4"])
        )

        assert options.subtitle_sync is True
        assert options.subtitle_sync_interval == 0.25

    def test_log_level_is_case_insensitive(self) -> None:
        assert cli.parse_args(["--log-level", "debug", "list"]).log_level == "DEBUG"

    @pytest.mark.parametrize(
        "argv, expected",
        [
            (["play", "--tui", "movie.mp4"], True),
            (["-v", "play", "--tui", "movie.mp4"], True),
            (["--log-file", "run.log", "play", "--tui", "movie.mp4"], False),
            (["play", "-i", "movie.mp4"], False),
            (["list"], False),
        ],
    )
    def test_owns_terminal(self, argv: list[str], expected: bool) -> None:
        assert cli.owns_terminal(cli.parse_args(argv)) is expected


class TestMain:
    """Tests for main() exit codes."""

    def test_list_empty_network(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setattr(cli, "list_renders", AsyncMock(return_value=[]))

        assert cli.main(["list"]) == 0
        assert "No renderers found" in capsys.readouterr().out

    def test_list_prints_renders(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setattr(cli, "list_renders", AsyncMock(return_value=[RENDER]))

        assert cli.main(["list"]) == 0
        assert str(RENDER) in capsys.readouterr().out

    def test_play_error_exit_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        error = ResolutionError(ResolutionErrorKind.NOT_FOUND, "No renderers found")
        monkeypatch.setattr(cli, "run_play", AsyncMock(side_effect=error))

        assert cli.main(["play", "movie.mp4"]) == 1

    def test_unexpected_error_exit_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "run_play", AsyncMock(side_effect=RuntimeError("boom")))

        assert cli.main(["play", "movie.mp4"]) == 1

    def test_tui_error_is_printed_after_ui_closes(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        error = ResolutionError(ResolutionErrorKind.NOT_FOUND, "No renderers found")
        monkeypatch.setattr(cli, "run_play", AsyncMock(side_effect=error))

        assert cli.main(["-v", "play", "--tui", "movie.mp4"]) == 1
        assert "Error: No renderers found" in capsys.readouterr().err


class TestCaster:
    """Tests for Caster wiring."""

    def test_build_render_spec(self) -> None:
        assert build_render_spec("http://10.0.0.5/d.xml", None, 3.0) == ExplicitAddress("http://10.0.0.5/d.xml")
        assert build_render_spec(None, "osmc", 3.0) == NameQuery(timeout=3.0, query="osmc")
        assert build_render_spec(None, None, 3.0) == First(timeout=3.0)

    def test_server_factory_uses_options(self, tmp_path: Path) -> None:
        video = tmp_path / "film.mp4"
        video.write_bytes(b"x")
        options = PlayOptions(path=video, host="192.168.1.10", port=9100, subtitle_offset_ms=250)
        caster = Caster(options, Config())

        server = caster.server_factory(RENDER)(PlaylistEntry(video=video))

        assert server.host == "192.168.1.10"
        assert server.port == 9100
        assert server.video_url == "http://192.168.1.10:9100/video"
        assert server.subtitle_offset_ms == 250

    def test_build_playlist_from_directory(self, tmp_path: Path) -> None:
        (tmp_path / "b.mkv").write_bytes(b"x")
        (tmp_path / "a.mp4").write_bytes(b"x")
        caster = Caster(PlayOptions(path=tmp_path, loop=True), Config())

        playlist = caster.build_playlist()

        assert [entry.title for entry in playlist] == ["a", "b"]
        assert playlist.loop is True

    def test_subtitle_sync_polls_at_least_as_often(self, tmp_path: Path) -> None:
        video = tmp_path / "film.mp4"

        assert Caster(PlayOptions(path=video), Config()).poll_interval() == 1.0
        assert Caster(PlayOptions(path=video, subtitle_sync=True), Config()).poll_interval() == 0.5
        synced = PlayOptions(path=video, subtitle_sync=True, subtitle_sync_interval=0.25)
        assert Caster(synced, Config()).poll_interval() == 0.25
        slow = PlayOptions(path=video, subtitle_sync=True, subtitle_sync_interval=3.0)
        assert Caster(slow, Config()).poll_interval() == 1.0

    async def test_run_stops_at_resolution_error(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        video = tmp_path / "film.mp4"
        video.write_bytes(b"x")
        error = ResolutionError(ResolutionErrorKind.NOT_FOUND, "No renderer matching 'tv'")
        monkeypatch.setattr("dlnacast.caster.resolve", AsyncMock(side_effect=error))
        caster = Caster(PlayOptions(path=video, device_query="tv", timeout=0.1), Config())

        with pytest.raises(ResolutionError):
            await caster.run()

        assert caster.controller is None
