"""実行設定の読み込み.

設定は次の順で解決します（後のものが優先）。

1. 既定値（Settings のフィールド既定値）
2. YAML 設定ファイル（任意。例: tag_registry.yml）
3. 環境変数（.env があれば python-dotenv で読み込む）

設定は1回の実行につき1回だけ読み込みます。
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml
from dotenv import load_dotenv
from loguru import logger

from .core.health import HealthThresholds
from .core.similarity import DEFAULT_SIMILARITY_THRESHOLD

# カテゴリ名 → Raindrop コレクションID
DEFAULT_COLLECTIONS: dict[str, int] = {
    "AI & Technology": 59437707,
    "Entertainment & Media": 59437708,
    "Business & Startups": 59437709,
    "Career & Professional Development": 59437710,
    "Politics & Current Affairs": 59437711,
    "Lifestyle & Practical": 59437712,
    "Finance & Economics": 59437713,
    "Global & Cultural": 59437715,
    "Others": 59437777,
}

DEFAULT_BATCH_SIZE = 20

_ENV_OVERRIDES = {
    "RAINDROP_TOKEN": "raindrop_token",
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_MODEL": "openai_model",
    "TAG_SIMILARITY_THRESHOLD": "similarity_threshold",
    "TAG_BATCH_SIZE": "batch_size",
    "TAG_REGISTRY_PATH": "registry_path",
    "TAG_METRICS_PATH": "metrics_path",
}


@dataclass(frozen=True)
class Settings:
    raindrop_token: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    batch_size: int = DEFAULT_BATCH_SIZE
    thresholds: HealthThresholds = field(default_factory=HealthThresholds)
    registry_path: Path = Path("tag-registry.json")
    metrics_path: Path = Path("tag-metrics.json")
    report_dir: Path | None = None
    request_timeout: float = 30.0
    collections: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_COLLECTIONS))

    def __post_init__(self) -> None:
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be in (0, 1], got {self.similarity_threshold}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        if not self.collections:
            raise ValueError("collections must map at least one category to a collection id")


def _coerce(name: str, value: object) -> object:
    try:
        if name in ("similarity_threshold", "request_timeout"):
            return float(value)
        if name == "batch_size":
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(value)
            return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {name}: {value!r}") from e
    if name in ("registry_path", "metrics_path", "report_dir"):
        return Path(value)
    return value


def _thresholds_from_config(data: object) -> HealthThresholds:
    if not isinstance(data, dict):
        raise ValueError(f"'thresholds' must be a mapping, got {type(data).__name__}")
    unknown = set(data) - {"growth_rate", "new_tag_ratio", "single_use_ratio", "entropy"}
    if unknown:
        raise ValueError(f"Unknown threshold keys: {sorted(unknown)}")
    try:
        return HealthThresholds(**{k: float(v) for k, v in data.items()})
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid threshold value: {e}") from e


def _collections_from_config(data: object) -> dict[str, int]:
    if not isinstance(data, dict):
        raise ValueError(f"'collections' must be a mapping, got {type(data).__name__}")
    try:
        return {str(name): int(cid) for name, cid in data.items()}
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid collection id: {e}") from e


def load_settings(path: Path | str | None = None, env_file: Path | str | None = None) -> Settings:
    """設定を読み込む.

    Args:
        path: YAML 設定ファイル（None の場合は既定値 + 環境変数のみ）
        env_file: .env ファイル（None の場合はカレントディレクトリから探索）

    Returns:
        Settings

    Raises:
        FileNotFoundError: path が指定され、存在しない場合
        ValueError: 設定値が不正な場合
    """
    load_dotenv(dotenv_path=env_file)

    values: dict[str, object] = {}
    if path is not None:
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")

        known = set(Settings.__dataclass_fields__)
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown settings in {path}: {sorted(unknown)}")

        for name, value in config.items():
            if name == "thresholds":
                values[name] = _thresholds_from_config(value)
            elif name == "collections":
                values[name] = _collections_from_config(value)
            elif value is not None:
                values[name] = _coerce(name, value)
        logger.debug(f"Loaded settings from {path}")

    for env_name, name in _ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name)
        if env_value:
            values[name] = _coerce(name, env_value)

    return replace(Settings(), **values)


def configure_logging(verbose: bool = False, log_file: Path | str | None = None) -> None:
    """loguru のシンクを設定する（CLI 用）.

    Args:
        verbose: True の場合 stderr を DEBUG レベルにする
        log_file: 指定された場合、ファイルシンクを追加する（DEBUG レベル）
    """
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    if log_file is not None:
        logger.add(str(log_file), level="DEBUG", rotation="10 MB", encoding="utf-8")
