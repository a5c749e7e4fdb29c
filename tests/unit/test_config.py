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

"""Unit tests for configuration loading."""

from __future__ import annotations

import textwrap

import pytest

from schemacollab.config import CollabConfig, ConfigError, LockSettings
from schemacollab.storage import LockKind


class TestLockSettings:
    def test_defaults(self):
        settings = LockSettings()
        assert settings.default_duration(LockKind.OPTIMISTIC) == 30
        assert settings.default_duration(LockKind.PESSIMISTIC) == 120
        assert settings.default_duration(LockKind.CRITICAL) == 240
        assert settings.max_duration_minutes == 480
        assert settings.max_extension_minutes == 120
        assert settings.max_reason_length == 200

    def test_default_must_fit_under_max(self):
        with pytest.raises(ValueError):
            LockSettings(max_duration_minutes=60)

    def test_every_kind_needs_a_default(self):
        with pytest.raises(ValueError):
            LockSettings(default_durations={LockKind.OPTIMISTIC: 30})


class TestFromYaml:
    def test_load(self, tmp_path):
        path = tmp_path / "collab.yaml"
        path.write_text(
            textwrap.dedent(
                """
                database_url: sqlite+aiosqlite:///collab.db
                log_level: debug
                locks:
                  max_duration_minutes: 600
                  default_durations:
                    optimistic: 15
                    pessimistic: 90
                    critical: 300
                notifications:
                  buffer_size: 10
                """
            ),
            encoding="utf-8",
        )

        config = CollabConfig.from_yaml(path)

        assert config.database_url == "sqlite+aiosqlite:///collab.db"
        assert config.log_level == "debug"
        assert config.locks.max_duration_minutes == 600
        assert config.locks.default_duration(LockKind.CRITICAL) == 300
        assert config.notifications.buffer_size == 10

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "collab.yaml"
        path.write_text("", encoding="utf-8")
        assert CollabConfig.from_yaml(path) == CollabConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            CollabConfig.from_yaml(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "collab.yaml"
        path.write_text("locks: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError, match="YAML parsing error"):
            CollabConfig.from_yaml(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "collab.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            CollabConfig.from_yaml(path)

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "collab.yaml"
        path.write_text("locks:\n  max_duration: 10\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            CollabConfig.from_yaml(path)


class TestFromEnv:
    def test_reads_prefixed_variables(self):
        config = CollabConfig.from_env(
            {
                "SCHEMACOLLAB_DATABASE_URL": "postgresql+asyncpg://db/collab",
                "SCHEMACOLLAB_LAST_SEEN_PATH": "/tmp/seen.json",
                "SCHEMACOLLAB_LOG_LEVEL": "warning",
                "SCHEMACOLLAB_MAX_DURATION_MINUTES": "600",
                "SCHEMACOLLAB_MAX_EXTENSION_MINUTES": "60",
                "SCHEMACOLLAB_SWEEP_INTERVAL_SECONDS": "15",
                "SCHEMACOLLAB_NOTIFICATION_BUFFER_SIZE": "20",
                "DATABASE_URL": "ignored",
            },
            load_dotenv=False,
        )

        assert config.database_url == "postgresql+asyncpg://db/collab"
        assert str(config.last_seen_path) == "/tmp/seen.json"
        assert config.log_level == "warning"
        assert config.locks.max_duration_minutes == 600
        assert config.locks.max_extension_minutes == 60
        assert config.locks.sweep_interval_seconds == 15.0
        assert config.notifications.buffer_size == 20

    def test_empty_environment(self):
        assert CollabConfig.from_env({}, load_dotenv=False) == CollabConfig()

    def test_invalid_value(self):
        with pytest.raises(ConfigError):
            CollabConfig.from_env({"SCHEMACOLLAB_NOTIFICATION_BUFFER_SIZE": "zero"}, load_dotenv=False)
