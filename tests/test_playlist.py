"""
Tests for Playlist and PlaylistEntry.

Tests cover:
- Building from a single file and from a recursive directory scan
- Subtitle pairing
- Navigation with and without loop
- Index bounds under arbitrary navigation
"""

import random
from pathlib import Path

import pytest

from dlnacast.core.playlist import (
    Playlist,
    PlaylistEntry,
    PlaylistError,
    PlaylistErrorKind,
    find_subtitle_for,
)


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    return path


@pytest.fixture
def media_dir(tmp_path: Path) -> Path:
    """A directory tree with videos, a subtitle and some non-media files."""
    _touch(tmp_path / "b_movie.mkv")
    _touch(tmp_path / "a_movie.mp4")
    _touch(tmp_path / "a_movie.srt")
    _touch(tmp_path / "notes.txt")
    _touch(tmp_path / "season1" / "ep01.avi")
    _touch(tmp_path / "season1" / "ep02.avi")
    _touch(tmp_path / "season1" / "cover.jpg")
    return tmp_path


def _playlist(count: int, loop: bool = False) -> Playlist:
    entries = [PlaylistEntry(video=Path(f"/media/{i:02d}.mp4")) for i in range(count)]
    return Playlist(entries=entries, loop=loop)


class TestPlaylistEntry:
    """Tests for PlaylistEntry."""

    def test_title_is_file_stem(self) -> None:
        """Title should be the file name without extension."""
        entry = PlaylistEntry(video=Path("/media/My Movie.mp4"))
        assert entry.title == "My Movie"

    def test_from_path_pairs_subtitle(self, tmp_path: Path) -> None:
        """Should pick up a same-named subtitle."""
        video = _touch(tmp_path / "film.mp4")
        subtitle = _touch(tmp_path / "film.srt")

        entry = PlaylistEntry.from_path(video)

        assert entry.subtitle == subtitle

    def test_from_path_without_inference(self, tmp_path: Path) -> None:
        """Should not look for subtitles when inference is off."""
        video = _touch(tmp_path / "film.mp4")
        _touch(tmp_path / "film.srt")

        entry = PlaylistEntry.from_path(video, infer_subtitle=False)

        assert entry.subtitle is None


class TestFindSubtitle:
    """Tests for subtitle lookup next to a video."""

    def test_prefers_srt_over_vtt(self, tmp_path: Path) -> None:
        video = _touch(tmp_path / "film.mkv")
        _touch(tmp_path / "film.vtt")
        srt = _touch(tmp_path / "film.srt")

        assert find_subtitle_for(video) == srt

    def test_falls_back_to_vtt(self, tmp_path: Path) -> None:
        video = _touch(tmp_path / "film.mkv")
        vtt = _touch(tmp_path / "film.vtt")

        assert find_subtitle_for(video) == vtt

    def test_none_when_missing(self, tmp_path: Path) -> None:
        video = _touch(tmp_path / "film.mkv")

        assert find_subtitle_for(video) is None


class TestPlaylistBuild:
    """Tests for building playlists."""

    def test_from_file(self, tmp_path: Path) -> None:
        """A single file gives a one-entry playlist."""
        video = _touch(tmp_path / "film.mp4")

        playlist = Playlist.from_path(video)

        assert len(playlist) == 1
        assert playlist.current.video == video
        assert playlist.current_index == 0

    def test_from_file_with_explicit_subtitle(self, tmp_path: Path) -> None:
        """An explicit subtitle wins over the inferred one."""
        video = _touch(tmp_path / "film.mp4")
        _touch(tmp_path / "film.srt")
        other = _touch(tmp_path / "subs" / "english.srt")

        playlist = Playlist.from_file(video, subtitle=other)

        assert playlist.current.subtitle == other

    def test_from_directory_is_recursive_and_sorted(self, media_dir: Path) -> None:
        """Directory scans recurse, skip non-media and sort by path."""
        playlist = Playlist.from_path(media_dir)

        videos = [entry.video for entry in playlist]
        assert videos == sorted(videos)
        assert [v.name for v in videos] == ["a_movie.mp4", "b_movie.mkv", "ep01.avi", "ep02.avi"]

    def test_from_directory_pairs_subtitles(self, media_dir: Path) -> None:
        playlist = Playlist.from_directory(media_dir)

        assert playlist[0].subtitle == media_dir / "a_movie.srt"
        assert playlist[1].subtitle is None

    def test_from_empty_directory_raises(self, tmp_path: Path) -> None:
        """A directory without media is an error."""
        _touch(tmp_path / "readme.txt")

        with pytest.raises(PlaylistError) as exc_info:
            Playlist.from_directory(tmp_path)

        assert exc_info.value.kind is PlaylistErrorKind.EMPTY

    def test_empty_entries_raises(self) -> None:
        with pytest.raises(PlaylistError) as exc_info:
            Playlist(entries=[])

        assert exc_info.value.kind is PlaylistErrorKind.EMPTY

    def test_loop_flag_is_kept(self, media_dir: Path) -> None:
        assert Playlist.from_path(media_dir, loop=True).loop is True


class TestPlaylistNavigation:
    """Tests for next/previous/select."""

    def test_next_advances(self) -> None:
        playlist = _playlist(3)

        entry = playlist.next()

        assert entry is playlist[1]
        assert playlist.current_index == 1

    def test_next_at_end_without_loop_is_noop(self) -> None:
        """Past the last entry nothing changes without loop."""
        playlist = _playlist(3)
        playlist.select(2)

        assert playlist.next() is None
        assert playlist.current_index == 2
        assert playlist.has_next is False

    def test_next_at_end_with_loop_wraps(self) -> None:
        playlist = _playlist(3, loop=True)
        playlist.select(2)

        assert playlist.next() is playlist[0]
        assert playlist.current_index == 0

    def test_previous_at_start_without_loop_is_noop(self) -> None:
        playlist = _playlist(3)

        assert playlist.previous() is None
        assert playlist.current_index == 0

    def test_previous_at_start_with_loop_wraps(self) -> None:
        playlist = _playlist(3, loop=True)

        assert playlist.previous() is playlist[2]
        assert playlist.current_index == 2

    def test_select(self) -> None:
        playlist = _playlist(3)

        assert playlist.select(1) is playlist[1]
        assert playlist.current_index == 1

    @pytest.mark.parametrize("index", [-1, 3, 100])
    def test_select_out_of_bounds_raises(self, index: int) -> None:
        """Out-of-range selection fails and leaves the index alone."""
        playlist = _playlist(3)
        playlist.select(1)

        with pytest.raises(PlaylistError) as exc_info:
            playlist.select(index)

        assert exc_info.value.kind is PlaylistErrorKind.INDEX_OUT_OF_BOUNDS
        assert playlist.current_index == 1

    def test_toggle_loop(self) -> None:
        playlist = _playlist(2)

        assert playlist.toggle_loop() is True
        assert playlist.has_next is True
        assert playlist.toggle_loop() is False

    def test_single_entry_has_next_only_with_loop(self) -> None:
        playlist = _playlist(1)
        assert playlist.has_next is False

        playlist.toggle_loop()
        assert playlist.has_next is True
        assert playlist.next() is playlist[0]

    def test_index_stays_in_bounds_under_random_navigation(self) -> None:
        """current_index must stay in [0, len) whatever the user does."""
        rng = random.Random(1234)
        for size in (1, 2, 5):
            playlist = _playlist(size)
            for _ in range(500):
                op = rng.choice(["next", "previous", "select", "loop"])
                if op == "next":
                    playlist.next()
                elif op == "previous":
                    playlist.previous()
                elif op == "loop":
                    playlist.toggle_loop()
                else:
                    index = rng.randint(-2, size + 1)
                    try:
                        playlist.select(index)
                    except PlaylistError:
                        pass
                assert 0 <= playlist.current_index < len(playlist)
