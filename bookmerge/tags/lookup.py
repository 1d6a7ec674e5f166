"""MusicBrainz release lookup used as an external chapter source.

Responsibilities:
- Fetch release recordings from the MusicBrainz web service.
- Turn track lengths into chapter marks.
- Raise `ChapterLookupError` for transport and payload failures.
"""

from __future__ import annotations

from typing import Any, Mapping

import requests

from .. import __version__
from ..parsing import normalize_optional_string
from .record import Chapter


class ChapterLookupError(RuntimeError):
    """Raised when a chapter lookup request fails or returns malformed data."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialize lookup error with the optional HTTP status."""

        super().__init__(message)
        self.status_code = status_code


class MusicBrainzClient:
    """Minimal read-only client for `/ws/2/release/{id}`."""

    def __init__(
        self,
        *,
        base_url: str = "https://musicbrainz.org/ws/2",
        timeout_seconds: float = 15.0,
    ) -> None:
        """Initialize lookup endpoint settings."""

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def fetch_release(self, release_id: str) -> dict[str, Any]:
        """Return the decoded release payload including recordings."""

        endpoint = f"{self.base_url}/release/{release_id}"
        headers = {
            "Accept": "application/json",
            "User-Agent": f"bookmerge/{__version__}",
        }
        try:
            response = requests.get(
                endpoint,
                headers=headers,
                params={"inc": "recordings", "fmt": "json"},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise ChapterLookupError(
                f"release lookup for `{release_id}` failed with HTTP {status_code}.",
                status_code=status_code,
            ) from exc
        except requests.Timeout as exc:
            raise ChapterLookupError(f"release lookup for `{release_id}` timed out.") from exc
        except requests.RequestException as exc:
            raise ChapterLookupError(f"release lookup transport error: {exc}") from exc
        except ValueError as exc:
            raise ChapterLookupError("release lookup returned malformed JSON.") from exc

        if not isinstance(payload, dict):
            raise ChapterLookupError("release lookup returned an unexpected payload.")
        return payload

    def chapters_for_release(self, release_id: str) -> list[Chapter]:
        """Return one chapter per recorded track, in medium order."""

        return release_chapters(self.fetch_release(release_id))


def release_chapters(payload: Mapping[str, Any]) -> list[Chapter]:
    """Convert a release payload into contiguous chapters.

    Tracks without a known length end the list, since later offsets would
    be unreliable.
    """

    chapters: list[Chapter] = []
    cursor_ms = 0
    media = payload.get("media")
    if not isinstance(media, list):
        return chapters
    for medium in media:
        tracks = medium.get("tracks") if isinstance(medium, Mapping) else None
        if not isinstance(tracks, list):
            continue
        for track in tracks:
            if not isinstance(track, Mapping):
                continue
            length = track.get("length")
            if not isinstance(length, int) or length <= 0:
                return chapters
            name = normalize_optional_string(track.get("title")) or f"Track {len(chapters) + 1}"
            chapters.append(Chapter(start_ms=cursor_ms, length_ms=length, name=name))
            cursor_ms += length
    return chapters
