"""ブックマークのコンテンツ種別推定（タグ提案プロンプトの補助情報）.

リンク・タイトル・抜粋のキーワードから、決定的（deterministic）に種別を1つ選ぶ。
判定は上から順に評価し、どれにも当たらなければ article とする。
"""

from __future__ import annotations

from enum import Enum


class ContentType(str, Enum):
    TOOL = "tool"
    TUTORIAL = "tutorial"
    VIDEO = "video"
    DOCUMENTATION = "documentation"
    ARTICLE = "article"


_INSTRUCTIONS = {
    ContentType.ARTICLE: "Focus on topic, publication, and subject matter tags",
    ContentType.TOOL: 'Include "tool" or "software" tag plus functionality and technology tags',
    ContentType.TUTORIAL: 'Add "tutorial" or "guide" tag plus skill level and technology tags',
    ContentType.VIDEO: 'Include "video" tag plus platform, topic, and format tags',
    ContentType.DOCUMENTATION: 'Add "docs" or "reference" tag plus technology and purpose tags',
}


def detect_content_type(title: str = "", link: str = "", excerpt: str = "") -> ContentType:
    """タイトル・リンク・抜粋からコンテンツ種別を推定する.

    Examples:
        >>> detect_content_type(title="Awesome CLI", link="https://github.com/x/y")
        <ContentType.TOOL: 'tool'>
        >>> detect_content_type(title="A step by step walkthrough")
        <ContentType.TUTORIAL: 'tutorial'>
    """
    title_lower = (title or "").lower()
    link_lower = (link or "").lower()
    text = f"{title_lower} {excerpt or ''}".lower()

    if (
        any(s in link_lower for s in ("github.com", "tools."))
        or any(s in title_lower for s in ("tool", "app", "software"))
        or any(s in text for s in ("download", "install"))
    ):
        return ContentType.TOOL

    if any(s in title_lower for s in ("tutorial", "guide", "how to", "step by step", "walkthrough")) or any(
        s in text for s in ("learn", "beginner")
    ):
        return ContentType.TUTORIAL

    if any(s in link_lower for s in ("youtube.com", "vimeo.com", "twitch.tv")) or any(
        s in title_lower for s in ("video", "watch", "episode")
    ):
        return ContentType.VIDEO

    if (
        any(s in link_lower for s in ("docs.", "/docs/", "documentation"))
        or any(s in title_lower for s in ("documentation", "reference", "api"))
        or "official docs" in text
    ):
        return ContentType.DOCUMENTATION

    return ContentType.ARTICLE


def content_type_instructions(content_type: ContentType | str) -> str:
    """種別ごとのタグ付け指示（未知の種別は article 扱い）."""
    try:
        return _INSTRUCTIONS[ContentType(content_type)]
    except ValueError:
        return _INSTRUCTIONS[ContentType.ARTICLE]
