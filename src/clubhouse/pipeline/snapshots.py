"""Reference-counted snapshot/restore of hook config files.

A provider's hooks file may hold, at the same time, content that predates
any agent, machine-injected hook wiring for one or more running agents, and
edits the user made while agents were running. Restoration removes only the
machine-injected wiring, and only once the last agent referencing the file
has exited.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from clubhouse.fsutil import atomic_write, write_json
from clubhouse.hooks.entries import strip_clubhouse_hooks

if TYPE_CHECKING:
    from clubhouse.orchestrators.base import OrchestratorProvider

logger = logging.getLogger(__name__)

# Top-level keys a provider writes as file scaffolding, not user content.
SCAFFOLD_KEYS = frozenset({"version"})


@dataclass
class ConfigSnapshot:
    original_content: str | None  # None = file did not exist before any agent
    ref_count: int = 0


def get_hooks_config_path(provider: OrchestratorProvider, project_path: str) -> str | None:
    """Path of the provider's hooks settings file, or None without hook support."""
    if not provider.capabilities.hooks:
        return None
    conventions = provider.conventions
    return os.path.join(project_path, conventions.config_dir, conventions.local_settings_file)


def is_disposable(settings: dict[str, Any]) -> bool:
    """True if nothing the user would want to keep remains in settings."""
    return all(key in SCAFFOLD_KEYS for key in settings)


def _abs(path: str | Path) -> str:
    return os.path.abspath(os.fspath(path))


def _is_json_object(content: str) -> bool:
    try:
        return isinstance(json.loads(content), dict)
    except json.JSONDecodeError:
        return False


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


@dataclass
class ConfigPipeline:
    _snapshots: dict[str, ConfigSnapshot] = field(default_factory=dict)
    _agent_files: dict[str, set[str]] = field(default_factory=dict)

    def snapshot_file(self, agent_id: str, path: str | Path) -> None:
        """Freeze a config file's content before the first agent writes to it.

        Later agents referencing the same file only bump the ref count.
        """
        abs_path = _abs(path)

        snapshot = self._snapshots.get(abs_path)
        if snapshot is None:
            original: str | None = None
            try:
                original = Path(abs_path).read_text(encoding="utf-8")
            except FileNotFoundError:
                pass
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Unreadable config file treated as absent: {abs_path}: {e}")
            snapshot = ConfigSnapshot(original_content=original)
            self._snapshots[abs_path] = snapshot
            logger.info(f"Snapshot saved: {abs_path} (existed={original is not None})")

        snapshot.ref_count += 1
        self._agent_files.setdefault(agent_id, set()).add(abs_path)

    def restore_for_agent(self, agent_id: str) -> None:
        """Release an agent's references; restore files no one references anymore."""
        files = self._agent_files.pop(agent_id, None)
        if not files:
            return

        due: dict[str, ConfigSnapshot] = {}
        for abs_path in sorted(files):
            snapshot = self._snapshots.get(abs_path)
            if snapshot is None:
                continue
            snapshot.ref_count -= 1
            if snapshot.ref_count <= 0:
                due[abs_path] = self._snapshots.pop(abs_path)

        self._restore_each(due)

    def restore_all(self) -> None:
        """Restore every tracked file regardless of ref counts, then forget them."""
        snapshots = self._snapshots
        self._snapshots = {}
        self._agent_files = {}
        self._restore_each(snapshots)

    def _restore_each(self, snapshots: dict[str, ConfigSnapshot]) -> None:
        """Restore each file; a failed write is re-raised after the rest are tried."""
        first_error: OSError | None = None
        for abs_path, snapshot in snapshots.items():
            try:
                self._restore(abs_path, snapshot)
            except OSError as e:
                logger.error(f"Failed to restore {abs_path}: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def has_snapshot(self, path: str | Path) -> bool:
        return _abs(path) in self._snapshots

    def ref_count(self, path: str | Path) -> int:
        snapshot = self._snapshots.get(_abs(path))
        return snapshot.ref_count if snapshot else 0

    def tracked_paths(self, agent_id: str) -> set[str]:
        return set(self._agent_files.get(agent_id, ()))

    def tracked_agents(self) -> list[str]:
        return list(self._agent_files)

    def _restore(self, abs_path: str, snapshot: ConfigSnapshot) -> None:
        original = snapshot.original_content

        if original is not None and not _is_json_object(original):
            # Writers merged into {} instead, so only the original holds user content
            logger.warning(f"Original of {abs_path} is not a JSON object, writing it back verbatim")
            atomic_write(Path(abs_path), original)
            return

        try:
            current_raw = Path(abs_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            if original is not None:
                atomic_write(Path(abs_path), original)
                logger.info(f"Restored original (file was removed): {abs_path}")
            return
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {abs_path} for restore: {e}")
            self._restore_original(abs_path, original)
            return

        try:
            current = json.loads(current_raw)
        except json.JSONDecodeError:
            current = None
        if not isinstance(current, dict):
            logger.warning(f"Config file is not a JSON object, restoring snapshot: {abs_path}")
            self._restore_original(abs_path, original)
            return

        stripped = strip_clubhouse_hooks(current)
        if original is None and is_disposable(stripped):
            _unlink_quietly(abs_path)
            logger.info(f"Restored (deleted): {abs_path}")
            return

        write_json(Path(abs_path), stripped)
        logger.info(f"Restored (hooks stripped): {abs_path}")

    def _restore_original(self, abs_path: str, original: str | None) -> None:
        if original is None:
            _unlink_quietly(abs_path)
            logger.info(f"Restored (deleted): {abs_path}")
        else:
            atomic_write(Path(abs_path), original)
            logger.info(f"Restored original: {abs_path}")
