"""
media/playlist.py
Flat-directory MP3 playlist with a cyclic cursor.
"""

from __future__ import annotations
import logging
from pathlib import Path

log = logging.getLogger("relaybot.playlist")

AUDIO_EXTENSIONS = (".mp3",)


class PlaylistStore:
    """Sorted list of tracks found in one directory, played on loop."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self._tracks: list[Path] = []
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._tracks)

    @property
    def tracks(self) -> tuple[Path, ...]:
        return tuple(self._tracks)

    @property
    def cursor(self) -> int:
        return self._cursor

    def refresh(self) -> None:
        """Rescan the directory and rewind to the first track.

        A directory that cannot be read yields an empty playlist.
        """
        try:
            names = [
                entry.name
                for entry in self.directory.iterdir()
                if entry.is_file() and entry.name.lower().endswith(AUDIO_EXTENSIONS)
            ]
        except OSError as e:
            log.error("Failed to read audio directory %s: %s", self.directory, e)
            names = []

        # casefold first, exact name second: total order even for "a.mp3"/"A.mp3"
        names.sort(key=lambda name: (name.casefold(), name))
        self._tracks = [self.directory / name for name in names]
        self._cursor = 0

        if not self._tracks:
            log.warning("No MP3 files found in %s. Nothing will be played.", self.directory)
        else:
            log.info("Loaded %d track(s) from %s.", len(self._tracks), self.directory)

    def next(self) -> Path:
        """Return the track under the cursor and advance, wrapping to 0."""
        if not self._tracks:
            raise IndexError("playlist is empty")
        track = self._tracks[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._tracks)
        return track

    def reset(self) -> None:
        self._cursor = 0
