# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configuration models for schemacollab.

Configuration is a pydantic model tree. It can be loaded from YAML
(``CollabConfig.from_yaml``) or from ``SCHEMACOLLAB_*`` environment variables
(``CollabConfig.from_env``, which also reads a ``.env`` file).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import dotenv
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .storage.models import LockKind

ENV_PREFIX = "SCHEMACOLLAB_"


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


class LockSettings(BaseModel):
    """Lease durations and limits, in minutes unless stated otherwise."""

    model_config = ConfigDict(extra="forbid")

    default_durations: dict[LockKind, int] = Field(
        default_factory=lambda: {
            LockKind.OPTIMISTIC: 30,
            LockKind.PESSIMISTIC: 120,
            LockKind.CRITICAL: 240,
        }
    )
    max_duration_minutes: int = Field(default=480, ge=1)
    max_extension_minutes: int = Field(default=120, ge=1)
    max_reason_length: int = Field(default=200, ge=1)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    renew_before_minutes: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _check_defaults(self) -> LockSettings:
        missing = [kind.value for kind in LockKind if kind not in self.default_durations]
        if missing:
            raise ValueError(f"default_durations is missing lock kinds: {missing}")
        for kind, minutes in self.default_durations.items():
            if not 0 < minutes <= self.max_duration_minutes:
                raise ValueError(f"default duration for {kind.value} must be in (0, {self.max_duration_minutes}], got {minutes}")
        return self

    def default_duration(self, kind: LockKind) -> int:
        return self.default_durations[kind]


class NotificationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    buffer_size: int = Field(default=50, ge=1)


class CollabConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        database_url: Async SQLAlchemy URL for the lease store. None selects
            the in-memory engine.
        last_seen_path: JSON file backing the last-seen cache. None keeps it
            in memory.
        log_level: Logging level name used by the CLI.
        locks: Lease durations and limits.
        notifications: Notification inbox settings.
    """

    model_config = ConfigDict(extra="forbid")

    database_url: str | None = None
    last_seen_path: Path | None = None
    log_level: str = "info"
    locks: LockSettings = Field(default_factory=LockSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> CollabConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigError: If the file is missing, is not valid YAML, or fails validation
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML parsing error in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping in {path}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollabConfig:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, *, load_dotenv: bool = True) -> CollabConfig:
        """Build configuration from ``SCHEMACOLLAB_*`` environment variables.

        Recognised variables: ``DATABASE_URL``, ``LAST_SEEN_PATH``,
        ``LOG_LEVEL``, ``MAX_DURATION_MINUTES``, ``MAX_EXTENSION_MINUTES``,
        ``SWEEP_INTERVAL_SECONDS``, ``NOTIFICATION_BUFFER_SIZE``.
        """
        if load_dotenv:
            dotenv.load_dotenv()
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(f"{ENV_PREFIX}{name}")

        data: dict[str, Any] = {}
        if value := get("DATABASE_URL"):
            data["database_url"] = value
        if value := get("LAST_SEEN_PATH"):
            data["last_seen_path"] = value
        if value := get("LOG_LEVEL"):
            data["log_level"] = value

        locks: dict[str, Any] = {}
        if value := get("MAX_DURATION_MINUTES"):
            locks["max_duration_minutes"] = value
        if value := get("MAX_EXTENSION_MINUTES"):
            locks["max_extension_minutes"] = value
        if value := get("SWEEP_INTERVAL_SECONDS"):
            locks["sweep_interval_seconds"] = value
        if locks:
            data["locks"] = locks

        if value := get("NOTIFICATION_BUFFER_SIZE"):
            data["notifications"] = {"buffer_size": value}

        return cls.from_dict(data)
