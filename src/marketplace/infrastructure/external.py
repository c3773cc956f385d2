"""
Marketplace External Integrations
=================================

- YAML policy file loader with watchdog hot-reload
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core.exceptions import ConfigurationException
from src.marketplace.domain import MarketplacePolicy
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, manager: "PolicyConfigManager", config_path: Path):
        self.manager = manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Policy file changed", extra={"path": event.src_path})
            self.manager.reload()


class PolicyConfigManager:
    """
    Thread-safe marketplace policy holder with hot-reload support.

    A missing file means the built-in defaults. A broken file at startup is
    a configuration error; a broken file on reload keeps the previous policy.
    """

    def __init__(self, policy: Optional[MarketplacePolicy] = None):
        self._policy = policy
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> MarketplacePolicy:
        """Initial policy load."""
        self._path = Path(path)
        try:
            self._policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(
                f"Invalid marketplace policy file: {path}",
                {"error": str(e)}
            )
        return self._policy

    def _load_from_file(self, path: Path) -> MarketplacePolicy:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return MarketplacePolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return MarketplacePolicy(**data)

    def reload(self) -> bool:
        """Reload policy from file; keeps the current one on error."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error("Failed to reload policy", extra={"error": str(e)})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("Marketplace policy reloaded")
        return True

    def start_watching(self) -> None:
        """Watch the policy file for changes (skipped when the file is absent)."""
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            # inotify is unavailable in some containers
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def policy(self) -> MarketplacePolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("Marketplace policy not loaded")
            return self._policy
