import contextlib
import logging
import os
import time
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class Watermark:
    """The last remote revision known to be reconciled with local state.

    Stored as plain text so it stays compatible with hand inspection; the file's
    modification time doubles as the cooldown clock.

    Attributes:
        path (Path): Location of the watermark file.
    """

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> str | None:
        """Returns the stored revision, or None if absent or empty."""
        try:
            value = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read watermark {self.path}: {e}")
            return None
        return value or None

    def write(self, revision: str) -> None:
        """Persists `revision` atomically, overwriting any previous value.

        Raises:
            OSError: If the file cannot be written.
        """
        tmp_file = self.path.with_suffix(".tmp")
        try:
            with open(tmp_file, "w") as f:
                f.write(f"{revision}\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, self.path)
        except OSError:
            with contextlib.suppress(OSError):
                tmp_file.unlink()
            raise
        logger.debug(f"Watermark set to {revision}")

    def age(self, now: float | None = None) -> float | None:
        """Seconds since the watermark was last written, or None if it does not exist."""
        try:
            mtime = self.path.stat().st_mtime
        except OSError:
            return None
        return (now if now is not None else time.time()) - mtime
