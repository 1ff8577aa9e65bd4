"""OpenAI ベースのタグサジェスター.

Chat Completions API（JSON モード）で以下を行います。

- カテゴリ分類（classify）
- タグ提案（suggest_tags）: レジストリの人気タグをプロンプトに含める
- タグのグルーピング提案（group_tags）: バッチ統合で使用

API エラーや JSON として解釈できない応答は CollaboratorError として送出します。
"""

from __future__ import annotations

import json
from collections.abc import Sequence

import openai
from loguru import logger

from ..core.consolidation import ConsolidationGroup, GroupingResult
from ..core.content_type import ContentType, content_type_instructions
from ..core.exceptions import CollaboratorError
from ..core.registry import TagContext
from .base_adapter import BaseTagSuggester, Item

DEFAULT_MODEL = "gpt-4o-mini"

_TYPE_SPECIFIC_GUIDELINES = {
    ContentType.TOOL: "- Include functionality and technology tags\n",
    ContentType.TUTORIAL: "- Include skill level and learning-related tags\n",
    ContentType.VIDEO: "- Include platform and format tags\n",
}


def _format_tag_list(tags: Sequence[tuple[str, int]]) -> str:
    return ", ".join(f"{tag} ({count}×)" for tag, count in tags)


def build_category_prompt(item: Item, categories: Sequence[str], content_type: ContentType) -> str:
    return (
        "Classify the following bookmark into one of these categories:\n"
        f"{', '.join(categories)}\n\n"
        "Bookmark:\n"
        f"- Title: {item.title}\n"
        f"- Excerpt: {item.excerpt or 'N/A'}\n"
        f"- Link: {item.link}\n"
        f"- Content Type: {content_type.value}\n\n"
        "Return JSON only:\n"
        '{"category": "..."}'
    )


def build_tag_prompt(item: Item, category: str, content_type: ContentType, context: TagContext) -> str:
    """タグ提案用のプロンプトを組み立てる.

    人気タグが無いセクションは省略する（新規レジストリでは両方とも空）。
    """
    sections = [
        f'Generate tags for this {content_type.value} in the "{category}" category:\n\n'
        "Bookmark:\n"
        f"- Title: {item.title}\n"
        f"- Excerpt: {item.excerpt or 'N/A'}\n"
        f"- Link: {item.link}\n"
    ]
    if context.category_tags:
        sections.append(f'Popular tags in "{category}": {_format_tag_list(context.category_tags)}\n')
    if context.global_tags:
        sections.append(f"Popular global tags: {_format_tag_list(context.global_tags)}\n")
    sections.append(
        f"Content-Specific Guidance: {content_type_instructions(content_type)}\n\n"
        "Tag Guidelines:\n"
        "- Use 3-5 tags per bookmark (prefer 3-4 unless content is very broad)\n"
        '- Use lowercase with hyphens (e.g., "machine-learning", "web-development")\n'
        "- Prioritize reusing existing popular tags when relevant\n"
        "- Keep tags concise and descriptive\n"
        "- Avoid redundant or overly generic tags\n"
        f"{_TYPE_SPECIFIC_GUIDELINES.get(content_type, '')}\n"
        'Good examples: ["react", "frontend", "tutorial"] or ["ai", "machine-learning", "tool"]\n'
        'Avoid: ["general", "interesting", "good", "useful"]\n\n'
        "Return JSON only:\n"
        '{"tags": ["tag1", "tag2", "tag3"]}'
    )
    return "\n".join(sections)


def build_grouping_prompt(tags: Sequence[str]) -> str:
    return (
        "Analyze these tags and group similar ones together:\n\n"
        f"Tags: {', '.join(tags)}\n\n"
        "Find groups of tags that mean the same thing or are very similar. "
        "For each group, suggest the best canonical name.\n\n"
        "Examples:\n"
        '- ["js", "javascript", "javascript-lang"] → canonical: "javascript"\n'
        '- ["ml", "machine-learning", "machine learning"] → canonical: "machine-learning"\n'
        '- ["react", "reactjs", "react-js"] → canonical: "react"\n\n'
        "Return JSON:\n"
        "{\n"
        '  "groups": [\n'
        "    {\n"
        '      "canonical": "javascript",\n'
        '      "variants": ["js", "javascript", "javascript-lang"],\n'
        '      "reason": "All refer to the JavaScript programming language"\n'
        "    }\n"
        "  ],\n"
        '  "standalone": ["unique-tag1", "unique-tag2"]\n'
        "}\n\n"
        "Include standalone tags that don't have similar variants."
    )


class OpenAITagSuggester(BaseTagSuggester):
    """OpenAI Chat Completions を使うタグサジェスター.

    Args:
        api_key: OpenAI API キー
        model: モデル名
        timeout: リクエストのタイムアウト（秒）
        client: 構築済みの OpenAI クライアント（テスト用）
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        client: openai.OpenAI | None = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ValueError("OpenAITagSuggester requires an API key (set OPENAI_API_KEY)")
            client = openai.OpenAI(api_key=api_key, timeout=timeout)
        self.client = client
        self.model = model

    def _complete_json(self, operation: str, prompt: str) -> dict:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            raise CollaboratorError("openai", operation, str(e)) from e

        content = response.choices[0].message.content or ""
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CollaboratorError("openai", operation, f"response is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CollaboratorError("openai", operation, f"expected a JSON object, got {type(data).__name__}")
        return data

    def classify(self, item: Item, categories: Sequence[str], content_type: ContentType) -> str:
        data = self._complete_json("classify", build_category_prompt(item, categories, content_type))
        category = data.get("category")
        if not isinstance(category, str) or not category:
            raise CollaboratorError("openai", "classify", f"missing 'category' in response: {data!r}")
        return category

    def suggest_tags(self, item: Item, category: str, content_type: ContentType, context: TagContext) -> list[str]:
        data = self._complete_json("suggest_tags", build_tag_prompt(item, category, content_type, context))
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise CollaboratorError("openai", "suggest_tags", f"'tags' must be a list: {data!r}")
        return [tag for tag in tags if isinstance(tag, str)]

    def group_tags(self, tags: Sequence[str]) -> GroupingResult:
        """1バッチ分のタグをグルーピングする.

        形式が不正なグループは警告ログを出してスキップする（バッチ全体は失敗させない）。
        """
        data = self._complete_json("group_tags", build_grouping_prompt(tags))
        raw_groups = data.get("groups") or []
        if not isinstance(raw_groups, list):
            raise CollaboratorError("openai", "group_tags", f"'groups' must be a list: {data!r}")

        groups: list[ConsolidationGroup] = []
        for raw in raw_groups:
            try:
                groups.append(ConsolidationGroup.from_dict(raw))
            except ValueError as e:
                logger.warning(f"Skipped malformed tag group: {e}")

        standalone = [tag for tag in data.get("standalone") or [] if isinstance(tag, str)]
        return GroupingResult(groups=groups, standalone=standalone)
