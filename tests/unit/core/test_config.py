from pathlib import Path

import pytest

from capture_pipeline.config import build_config, load_config, load_config_async
from capture_pipeline.core.paths import DEFAULT_CONFIG_PATH
from tests.infrastructure.helpers import run_async


class TestBuildConfig:
    def test_defaults(self):
        config = build_config()

        assert config.camera.resolution == (1920, 1080)
        assert config.camera.audio is False
        assert config.batch.max_items == 15
        assert config.batch.max_size_mb == 2.5
        assert config.analysis.stream_timeout_s == 90
        assert config.analysis.stream_idle_timeout_s == 30
        assert config.analysis.models_total == 7
        assert config.logging.level == "INFO"

    def test_string_values_coerced(self):
        config = build_config(
            {
                "camera.resolution": "1280x720",
                "camera.audio": "yes",
                "camera.rear_label_hints": "Back, WORLD",
                "batch.max_items": "5",
                "batch.quality": "0.7",
                "analysis.base_url": "https://api.example.com/",
                "logging.level": "debug",
            }
        )

        assert config.camera.resolution == (1280, 720)
        assert config.camera.audio is True
        assert config.camera.rear_label_hints == ("back", "world")
        assert config.batch.max_items == 5
        assert config.batch.quality == 0.7
        assert config.analysis.stream_url == "https://api.example.com/api/analyze-stream"
        assert config.analysis.fallback_url == "https://api.example.com/api/analyze"
        assert config.logging.level == "DEBUG"

    @pytest.mark.parametrize(
        "values",
        [
            {"camera.resolution": "huge"},
            {"batch.max_items": "many"},
            {"batch.quality": "1.5"},
            {"analysis.stream_timeout_s": "-1"},
        ],
    )
    def test_malformed_values_fall_back(self, values):
        config = build_config(values)
        defaults = build_config()

        assert config.camera.resolution == defaults.camera.resolution
        assert config.batch.max_items == defaults.batch.max_items
        assert config.batch.quality == defaults.batch.quality
        assert config.analysis.stream_timeout_s == defaults.analysis.stream_timeout_s

    def test_overrides_win_and_none_ignored(self):
        config = build_config(
            {"analysis.base_url": "http://file"},
            {"analysis.base_url": "http://cli", "batch.max_items": None},
        )

        assert config.analysis.base_url == "http://cli"
        assert config.batch.max_items == 15

    def test_max_items_at_least_one(self):
        assert build_config({"batch.max_items": "0"}).batch.max_items == 1

    def test_log_file(self, tmp_path):
        config = build_config({"logging.file": str(tmp_path / "run.log")})

        assert config.logging.file == tmp_path / "run.log"


class TestLoadConfig:
    def test_packaged_defaults_file(self):
        assert DEFAULT_CONFIG_PATH.exists()
        config = load_config()

        assert config.analysis.stream_timeout_s == 90
        assert config.analysis.stream_idle_timeout_s == 30

    def test_file_with_comments(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text(
            "# comment\n"
            "batch.max_items = 9   # inline\n"
            "analysis.base_url = 'http://localhost:8080'\n"
            "not a setting\n",
            encoding="utf-8",
        )

        config = run_async(load_config_async(path))

        assert config.batch.max_items == 9
        assert config.analysis.base_url == "http://localhost:8080"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.txt", {"batch.max_items": 3})

        assert config.batch.max_items == 3
