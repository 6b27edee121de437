"""Service seed file — loads services.yaml into ServiceDefinitions.

Lets a deployment declare its monitored services up front; the monitor adds
any that are not already in storage at startup. Example::

    services:
      - id: apple
        name: apple.com
        pingServiceName: http-head
        url: https://apple.com
        timeout: 10000
        interval: 60000
        failureInterval: 30000
        warningThreshold: 3000
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from src.health.errors import ValidationError
from src.health.models import ServiceDefinition

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """Loads and caches service definitions from a YAML file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._services: list[ServiceDefinition] = []
        self._loaded = False

    def load(self, force: bool = False) -> list[ServiceDefinition]:
        """Parse the file and return valid definitions. Malformed entries are skipped."""
        if self._loaded and not force:
            return self._services

        self._services = []
        if not self._path.exists():
            logger.info("Service file not found: %s", self._path)
            self._loaded = True
            return self._services

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to parse %s: %s", self._path, e)
            self._loaded = True
            return self._services

        entries: list[Any] = (raw.get("services") or []) if isinstance(raw, dict) else []
        for entry in entries:
            try:
                self._services.append(ServiceDefinition.from_dict(entry))
            except ValidationError as e:
                logger.warning("Skipping malformed service entry %r: %s", entry, e)

        self._loaded = True
        logger.info("Loaded %d services from %s", len(self._services), self._path)
        return self._services

    @property
    def services(self) -> list[ServiceDefinition]:
        return self.load()

    def reload(self) -> list[ServiceDefinition]:
        return self.load(force=True)
