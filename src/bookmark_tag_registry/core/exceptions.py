"""Tag registry exceptions.

レジストリ/メトリクス永続化と外部コラボレータ呼び出しで使うカスタム例外クラスを定義します。
"""

from __future__ import annotations

from pathlib import Path


class PersistenceCorruptError(Exception):
    """永続化ファイルは存在するが解釈できない場合の例外.

    過去の状態を推測して初期化すると履歴を壊すため、そのランは致命的エラーとして中断します。

    Attributes:
        path: 読み込みに失敗したファイルのパス
        reason: 失敗理由
    """

    kind = "snapshot"

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        message = (
            f"Corrupt {self.kind}: {self.path} ({reason}). "
            "Fix or remove the file manually; it is never overwritten automatically."
        )
        super().__init__(message)


class RegistryCorruptError(PersistenceCorruptError):
    """tag-registry.json が壊れている場合の例外."""

    kind = "tag registry snapshot"


class MetricsHistoryCorruptError(PersistenceCorruptError):
    """tag-metrics.json が壊れている場合の例外."""

    kind = "metrics history"


class CollaboratorError(Exception):
    """外部コラボレータ（アイテムストア / タグサジェスター）の呼び出し失敗.

    オーケストレーターはアイテム単位・バッチ単位でこの例外を捕捉し、ログに残して処理を継続します。

    Attributes:
        collaborator: 失敗したコラボレータ名（例: "raindrop", "openai"）
        operation: 実行しようとした操作
    """

    def __init__(self, collaborator: str, operation: str, detail: str) -> None:
        self.collaborator = collaborator
        self.operation = operation
        self.detail = detail
        super().__init__(f"{collaborator} {operation} failed: {detail}")


class AliasConflictError(ValueError):
    """エイリアス名前空間と正規タグ名前空間の不変条件を壊すマージ操作の例外."""

    def __init__(self, canonical: str, variant: str, reason: str) -> None:
        self.canonical = canonical
        self.variant = variant
        super().__init__(f"Cannot merge '{variant}' into '{canonical}': {reason}")
