import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    BRANCH_CANDIDATES,
    CONFIG_FILE,
    DEFAULT_BACKUP_DIR,
    DEFAULT_SYNC_DIR,
    DEFAULT_TRACKED_FILES,
    WATERMARK_FILENAME,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


@dataclass(frozen=True)
class TrackedFile:
    """One synchronized shell file.

    Attributes:
        local_path (Path): Absolute path of the live file (e.g. ~/.zshrc).
        mirror_name (str): File name of its copy inside the sync directory.
    """

    local_path: Path
    mirror_name: str

    def mirror_path(self, sync_dir: Path) -> Path:
        """Returns the mirrored copy's location inside `sync_dir`."""
        return sync_dir / self.mirror_name

    @classmethod
    def from_entry(cls, entry: str | dict) -> "TrackedFile":
        """Builds a pair from a config entry.

        A plain string is a home-relative name whose mirror drops the leading dot
        ('.zshrc' -> ~/.zshrc <-> zshrc). A table needs 'local' and may set 'mirror'.

        Raises:
            ValueError: If the entry is malformed.
        """
        if isinstance(entry, str):
            if not entry.strip():
                raise ValueError("Empty tracked file entry")
            local = Path(entry).expanduser()
            if not local.is_absolute():
                local = Path.home() / local
            return cls(local, local.name.lstrip("."))

        if isinstance(entry, dict) and "local" in entry:
            local = Path(entry["local"]).expanduser()
            if not local.is_absolute():
                local = Path.home() / local
            mirror = entry.get("mirror") or local.name.lstrip(".")
            return cls(local, str(mirror))

        raise ValueError(f"Invalid tracked file entry '{entry}'")


def _default_tracked() -> tuple[TrackedFile, ...]:
    return tuple(TrackedFile.from_entry(name) for name in DEFAULT_TRACKED_FILES)


@dataclass(frozen=True)
class CoreConfig:
    """Core application settings.

    Attributes:
        sync_dir (Path): Local clone of the remote store.
        remote_name (str): The git remote to sync against.
        branch_candidates (tuple[str, ...]): Remote branches tried in order.
        backup_dir (Path): Where conflicting variants are copied.
    """

    sync_dir: Path = DEFAULT_SYNC_DIR
    remote_name: str = "origin"
    branch_candidates: tuple[str, ...] = tuple(BRANCH_CANDIDATES)
    backup_dir: Path = DEFAULT_BACKUP_DIR

    @property
    def watermark_file(self) -> Path:
        return self.sync_dir / WATERMARK_FILENAME


@dataclass(frozen=True)
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass(frozen=True)
class FilesConfig:
    """Tracked file settings.

    Attributes:
        tracked (tuple[TrackedFile, ...]): Ordered local/mirror pairs.
    """

    tracked: tuple[TrackedFile, ...] = field(default_factory=_default_tracked)


@dataclass(frozen=True)
class DaemonConfig:
    """Polling loop settings.

    Attributes:
        sync_interval (int): Seconds slept between cycles.
        cooldown (int): Seconds after a watermark update during which
            remote checks are suppressed.
        prompt_timeout (int): Seconds a confirmation dialog waits before
            counting as declined.
    """

    sync_interval: int = 1200
    cooldown: int = 300
    prompt_timeout: int = 300


@dataclass(frozen=True)
class HooksConfig:
    """Post-pull hook settings.

    Attributes:
        reload_shell (bool): Whether to re-source the primary config after a pull.
    """

    reload_shell: bool = True


@dataclass(frozen=True)
class Config:
    """Global configuration aggregator.

    Built once at startup and passed explicitly to detectors and controllers.

    Attributes:
        core (CoreConfig): Core settings.
        limits (LimitsConfig): Resource limits.
        files (FilesConfig): Tracked file pairs.
        daemon (DaemonConfig): Polling loop behavior.
        hooks (HooksConfig): Post-pull hooks.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    files: FilesConfig = field(default_factory=FilesConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    hooks: HooksConfig = field(default_factory=HooksConfig)

    @property
    def tracked(self) -> tuple[TrackedFile, ...]:
        return self.files.tracked

    def mirror_path(self, pair: TrackedFile) -> Path:
        """Returns the mirror location of `pair` inside the sync directory."""
        return pair.mirror_path(self.core.sync_dir)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults and the TOML file, if present.

        Args:
            path (Path | None): Config file to read. Defaults to CONFIG_FILE.

        Returns:
            Config: The fully merged configuration object.
        """
        path = path or CONFIG_FILE
        instance = cls()
        if not path.exists():
            return instance

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return instance
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return instance

        return instance._merged(data)

    def _merged(self, data: dict) -> "Config":
        """Returns a copy with the sections of `data` merged in."""
        updates: dict[str, Any] = {}
        for section in ("core", "limits", "daemon", "hooks"):
            if section in data:
                updates[section] = self._update_dataclass(
                    section, getattr(self, section), data[section]
                )

        if "files" in data:
            files = dict(data["files"])
            entries = files.pop("tracked", None)
            if files:
                logger.warning(
                    f"Unknown config keys in [files]: {', '.join(files)}. Ignoring."
                )
            if entries is not None:
                updates["files"] = FilesConfig(tracked=self._parse_tracked(entries))

        return replace(self, **updates)

    @staticmethod
    def _parse_tracked(entries: Any) -> tuple[TrackedFile, ...]:
        if not isinstance(entries, list):
            logger.warning("Config error in [files].tracked: expected a list.")
            return _default_tracked()

        pairs: list[TrackedFile] = []
        seen: set[str] = set()
        for entry in entries:
            try:
                pair = TrackedFile.from_entry(entry)
            except ValueError as e:
                logger.warning(f"Config error in [files].tracked: {e}. Skipping.")
                continue
            if pair.mirror_name in seen:
                logger.warning(
                    f"Duplicate mirror name '{pair.mirror_name}' in [files]. Skipping."
                )
                continue
            seen.add(pair.mirror_name)
            pairs.append(pair)
        return tuple(pairs)

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(invalid_keys)}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["sync_interval", "cooldown", "prompt_timeout"]:
                    filtered_updates[k] = parse_time(v)
                elif k in ["sync_dir", "backup_dir"]:
                    filtered_updates[k] = Path(v).expanduser()
                elif k == "branch_candidates":
                    if isinstance(v, str):
                        v = [v]
                    filtered_updates[k] = tuple(str(b) for b in v)
                else:
                    filtered_updates[k] = v
            except (TypeError, ValueError) as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
