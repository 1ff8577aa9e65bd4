"""Unit tests for settings loading."""

import sys
from pathlib import Path

import pytest
from loguru import logger

from bookmark_tag_registry.config import DEFAULT_COLLECTIONS, Settings, configure_logging, load_settings
from bookmark_tag_registry.core.health import HealthThresholds

ENV_VARS = [
    "RAINDROP_TOKEN",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "TAG_SIMILARITY_THRESHOLD",
    "TAG_BATCH_SIZE",
    "TAG_REGISTRY_PATH",
    "TAG_METRICS_PATH",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv → delenv で、テスト中に .env から読まれた値もテスト後に消える
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def no_env_file(tmp_path: Path) -> Path:
    return tmp_path / "missing.env"


class TestLoadSettings:
    """load_settings関数のテスト."""

    def test_defaults(self, no_env_file: Path) -> None:
        settings = load_settings(env_file=no_env_file)

        assert settings.similarity_threshold == 0.8
        assert settings.batch_size == 20
        assert settings.thresholds == HealthThresholds()
        assert settings.registry_path == Path("tag-registry.json")
        assert settings.collections == DEFAULT_COLLECTIONS
        assert settings.raindrop_token is None

    def test_yaml_file(self, tmp_path: Path, no_env_file: Path) -> None:
        config = tmp_path / "tag_registry.yml"
        config.write_text(
            "similarity_threshold: 0.85\n"
            "batch_size: 10\n"
            "registry_path: data/registry.json\n"
            "thresholds:\n"
            "  growth_rate: 0.2\n"
            "collections:\n"
            "  Reading: 1\n"
            "  Others: 2\n",
            encoding="utf-8",
        )

        settings = load_settings(config, env_file=no_env_file)

        assert settings.similarity_threshold == 0.85
        assert settings.batch_size == 10
        assert settings.registry_path == Path("data/registry.json")
        assert settings.thresholds == HealthThresholds(growth_rate=0.2)
        assert settings.collections == {"Reading": 1, "Others": 2}

    def test_environment_overrides_file(
        self, tmp_path: Path, no_env_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config = tmp_path / "tag_registry.yml"
        config.write_text("batch_size: 10\n", encoding="utf-8")
        monkeypatch.setenv("TAG_BATCH_SIZE", "5")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")

        settings = load_settings(config, env_file=no_env_file)

        assert settings.batch_size == 5
        assert settings.openai_model == "gpt-4o"

    def test_dotenv_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("RAINDROP_TOKEN=from-dotenv\nTAG_METRICS_PATH=m.json\n", encoding="utf-8")

        settings = load_settings(env_file=env_file)

        assert settings.raindrop_token == "from-dotenv"
        assert settings.metrics_path == Path("m.json")

    @pytest.mark.parametrize(
        "content",
        [
            "similarity_threshold: 1.5\n",
            "batch_size: 0\n",
            "batch_size: many\n",
            "unknown_key: 1\n",
            "thresholds:\n  velocity: 1\n",
            "collections: [1, 2]\n",
            "- just\n- a list\n",
        ],
    )
    def test_invalid_values(self, tmp_path: Path, no_env_file: Path, content: str) -> None:
        config = tmp_path / "tag_registry.yml"
        config.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError):
            load_settings(config, env_file=no_env_file)

    def test_invalid_environment_value(self, no_env_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TAG_SIMILARITY_THRESHOLD", "high")
        with pytest.raises(ValueError):
            load_settings(env_file=no_env_file)

    def test_missing_file(self, tmp_path: Path, no_env_file: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yml", env_file=no_env_file)


class TestSettings:
    def test_empty_collections_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(collections={})


class TestConfigureLogging:
    def test_log_file_sink(self, tmp_path: Path) -> None:
        log_file = tmp_path / "run.log"
        try:
            configure_logging(verbose=True, log_file=log_file)
            logger.debug("registry loaded")
        finally:
            logger.remove()
            logger.add(sys.stderr)

        assert "registry loaded" in log_file.read_text(encoding="utf-8")
