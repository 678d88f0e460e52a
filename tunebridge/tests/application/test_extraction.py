from unittest.mock import Mock

import pytest

from tunebridge.application.extraction import (
    LinkExtractor, compile_patterns, contains_link, extract,
)
from tunebridge.domain.entities import Kind, ResourceRef, Service
from tunebridge.domain.errors import ExtractionError, TransportError


def spotify(kind, native_id):
    return ResourceRef(Service.SPOTIFY, kind, native_id)


class TestSpotifyLinks:
    """Spotify link shapes."""

    def test_track_web_link(self):
        refs = extract(Service.SPOTIFY, "check this out https://open.spotify.com/track/abc123")

        assert refs == [spotify(Kind.TRACK, "abc123")]

    def test_link_with_query_and_locale(self):
        text = "https://open.spotify.com/intl-de/album/4aawyAB9vmqN3uQ7FjRGTy?si=0123abcd"

        assert extract(Service.SPOTIFY, text) == [spotify(Kind.ALBUM, "4aawyAB9vmqN3uQ7FjRGTy")]

    def test_app_uri(self):
        assert extract(Service.SPOTIFY, "spotify:track:6rqhFgbbKwnb9MLmUQDhG6") == [
            spotify(Kind.TRACK, "6rqhFgbbKwnb9MLmUQDhG6")
        ]

    def test_playlist_links_are_ignored(self):
        assert extract(Service.SPOTIFY, "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M") == []

    def test_order_and_duplicates_are_preserved(self):
        text = (
            "first https://open.spotify.com/track/aaa then spotify:album:bbb "
            "and again https://open.spotify.com/track/aaa"
        )

        assert extract(Service.SPOTIFY, text) == [
            spotify(Kind.TRACK, "aaa"),
            spotify(Kind.ALBUM, "bbb"),
            spotify(Kind.TRACK, "aaa"),
        ]

    def test_short_link_skipped_without_resolver(self):
        assert extract(Service.SPOTIFY, "https://spotify.link/AbCdEf123") == []


class TestTidalLinks:
    """Tidal link shapes."""

    @pytest.mark.parametrize("text,expected", [
        ("https://tidal.com/browse/track/77646170", (Kind.TRACK, "77646170")),
        ("https://listen.tidal.com/album/77646168", (Kind.ALBUM, "77646168")),
        ("https://tidal.com/track/1234/u", (Kind.TRACK, "1234")),
        ("https://www.tidal.com/browse/video/555", (Kind.VIDEO, "555")),
        ("tidal:album:99", (Kind.ALBUM, "99")),
    ])
    def test_shapes(self, text, expected):
        kind, native_id = expected

        assert extract(Service.TIDAL, text) == [ResourceRef(Service.TIDAL, kind, native_id)]

    def test_non_numeric_ids_are_skipped(self):
        assert extract(Service.TIDAL, "https://tidal.com/browse/track/abc") == []


class TestYoutubeLinks:
    """YouTube link shapes."""

    @pytest.mark.parametrize("text", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://music.youtube.com/watch?v=dQw4w9WgXcQ&list=RDAMVM",
        "https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ?t=42",
        "https://www.youtube.com/live/dQw4w9WgXcQ",
        "https://youtube.com/shorts/dQw4w9WgXcQ",
    ])
    def test_shapes(self, text):
        assert extract(Service.YOUTUBE, text) == [
            ResourceRef(Service.YOUTUBE, Kind.VIDEO, "dQw4w9WgXcQ")
        ]

    def test_watch_link_without_valid_id_is_skipped(self):
        assert extract(Service.YOUTUBE, "https://www.youtube.com/watch?list=PL123") == []
        assert extract(Service.YOUTUBE, "https://www.youtube.com/watch?v=short") == []


class TestLinkExtractor:
    """Tests for the class form with short link expansion."""

    def setup_method(self):
        self.resolver = Mock()
        self.extractor = LinkExtractor(resolver=self.resolver)

    def test_short_link_is_expanded_in_place(self):
        self.resolver.resolve.return_value = "https://open.spotify.com/track/fromshort?si=x"
        text = "a spotify:track:first b https://spotify.link/Xy12 c spotify:track:last"

        refs = self.extractor.extract(Service.SPOTIFY, text)

        self.resolver.resolve.assert_called_once_with("https://spotify.link/Xy12")
        assert [r.native_id for r in refs] == ["first", "fromshort", "last"]

    def test_failed_short_link_is_dropped(self):
        self.resolver.resolve.side_effect = TransportError("timeout")

        refs = self.extractor.extract(Service.SPOTIFY, "https://spotify.link/Xy12 spotify:track:ok")

        assert refs == [spotify(Kind.TRACK, "ok")]

    def test_short_link_expanding_to_another_short_link_is_dropped(self):
        self.resolver.resolve.return_value = "https://spotify.link/Loop"

        assert self.extractor.extract(Service.SPOTIFY, "https://spotify.link/Xy12") == []

    def test_extract_all_groups_by_service(self):
        text = (
            "https://tidal.com/browse/track/1 "
            "https://open.spotify.com/track/abc "
            "https://youtu.be/dQw4w9WgXcQ"
        )

        found = self.extractor.extract_all(text)

        assert found == {
            Service.SPOTIFY: [spotify(Kind.TRACK, "abc")],
            Service.TIDAL: [ResourceRef(Service.TIDAL, Kind.TRACK, "1")],
            Service.YOUTUBE: [ResourceRef(Service.YOUTUBE, Kind.VIDEO, "dQw4w9WgXcQ")],
        }

    def test_extract_all_restricted_to_services(self):
        text = "https://tidal.com/browse/track/1 https://open.spotify.com/track/abc"

        assert list(self.extractor.extract_all(text, services=[Service.TIDAL])) == [Service.TIDAL]

    def test_extract_all_without_links(self):
        assert self.extractor.extract_all("no links here") == {}
        assert self.extractor.extract_all("") == {}

    def test_extract_in_order_interleaves_services(self):
        self.resolver.resolve.return_value = "https://open.spotify.com/album/fromshort"
        text = (
            "https://youtu.be/dQw4w9WgXcQ "
            "https://open.spotify.com/track/abc "
            "https://tidal.com/browse/track/1 "
            "https://spotify.link/Xy12"
        )

        refs = self.extractor.extract_in_order(text)

        assert refs == [
            ResourceRef(Service.YOUTUBE, Kind.VIDEO, "dQw4w9WgXcQ"),
            spotify(Kind.TRACK, "abc"),
            ResourceRef(Service.TIDAL, Kind.TRACK, "1"),
            spotify(Kind.ALBUM, "fromshort"),
        ]

    def test_extract_in_order_restricted_to_services(self):
        text = "https://tidal.com/browse/track/1 https://open.spotify.com/track/abc"

        assert self.extractor.extract_in_order(text, services=[Service.SPOTIFY]) == [spotify(Kind.TRACK, "abc")]
        assert self.extractor.extract_in_order("") == []


def test_invalid_pattern_is_a_configuration_error():
    with pytest.raises(ExtractionError):
        compile_patterns({Service.SPOTIFY: r"(unclosed"})

    with pytest.raises(ExtractionError):
        LinkExtractor(patterns={Service.TIDAL: r"[bad"})


def test_contains_link():
    assert contains_link(Service.SPOTIFY, "see spotify:track:x")
    assert not contains_link(Service.TIDAL, "see spotify:track:x")
    assert not contains_link(Service.YOUTUBE, None)
