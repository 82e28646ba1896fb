"""Build the chat messages and response format for dialogue generation."""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from ..repository import PriorContext
from ..schemas.conversation import (
    Difficulty,
    Familiarity,
    GenerateRequest,
    LLMConversation,
    VoiceMode,
)

SYSTEM_PROMPT = (
    "You are a helpful assistant that generates natural Japanese conversations "
    "for language learners. For each line, you provide the original Japanese "
    "text (with kanji), its full hiragana reading, a {language} translation "
    "and a short grammar explanation written in {language}. "
    "Respond with a single JSON object only, without markdown fences or commentary."
)

# Scenarios models fall back to when the topic leaves room for interpretation.
DEFAULT_EXCLUDED_SCENARIOS: tuple[str, ...] = (
    "在餐廳點餐",
    "問路",
    "第一次見面的自我介紹",
    "聊天氣",
    "在便利商店結帳",
    "週末計畫",
)

_EXCHANGE_RANGE = "8-10"

_VOICE_FRAMING: dict[VoiceMode, str] = {
    "different": "說話者 A 是女性，說話者 B 是男性，請讓用詞與語氣符合各自的身分。",
    "same": "說話者 A 與 B 是同性別、年齡相近的兩個人，請讓兩人的用詞自然一致。",
}

_FAMILIARITY_TONE: dict[Familiarity, str] = {
    "stranger": "兩人是初次見面，請使用正式的敬語（尊敬語、謙讓語）。",
    "casual": "兩人最近才認識，請使用禮貌但輕鬆的です／ます體。",
    "close": "兩人是好朋友，請使用常體（タメ口）與自然的口語表達。",
}


def _difficulty_instruction(difficulty: Difficulty) -> str:
    return f"詞彙與文法請控制在 {difficulty} 程度，避免超出此程度的單字與句型。"


def _bullet_list(items: Iterable[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def collect_excluded_topics(prior: Optional[PriorContext]) -> list[str]:
    """Merge prior titles with the built-in scenario exclusions, keeping order."""

    topics: list[str] = []
    seen: set[str] = set()
    sources: list[Iterable[str]] = []
    if prior is not None:
        sources.append(prior.titles)
    sources.append(DEFAULT_EXCLUDED_SCENARIOS)
    for source in sources:
        for topic in source:
            normalized = topic.strip()
            if normalized and normalized not in seen:
                seen.add(normalized)
                topics.append(normalized)
    return topics


def _prior_dialogue_section(prior: Optional[PriorContext]) -> str:
    if prior is None or not prior.recent_dialogues:
        return ""
    blocks = []
    for index, lines in enumerate(prior.recent_dialogues, start=1):
        blocks.append(f"對話 {index}：\n" + "\n".join(lines))
    return (
        "\n\n以下是這個練習最近已生成過的對話，請避免重複相同的情境發展與句子：\n"
        + "\n\n".join(blocks)
    )


def _format_instructions(language: str) -> str:
    example = {
        "title": "對話的標題",
        "sentences": [
            {
                "role": "A",
                "text": "日文原文（含漢字）",
                "hiragana": "平假名讀音",
                "translation": f"{language}翻譯",
                "grammarExplanation": f"以{language}說明這句的文法重點",
            }
        ],
    }
    return (
        "請只輸出符合以下格式的 JSON 物件：\n"
        + json.dumps(example, ensure_ascii=False, indent=2)
    )


def build_user_prompt(
    request: GenerateRequest,
    prior: Optional[PriorContext] = None,
    *,
    translation_language: str = "繁體中文",
) -> str:
    excluded = collect_excluded_topics(prior)
    sections = [
        f"根據以下場景生成一段日文對話：{request.prompt}",
        (
            f"請生成一段自然的對話，包含{_EXCHANGE_RANGE}次交流，"
            "由說話者 A 開始並與 B 輪流發言。每一句話都需要提供：\n"
            "1. 日文原文（含漢字）\n"
            "2. 平假名讀音（整句完整的平假名）\n"
            f"3. {translation_language}翻譯\n"
            f"4. 以{translation_language}撰寫的簡短文法說明\n"
            "另外請為整段對話取一個簡短的標題。"
        ),
        _difficulty_instruction(request.difficulty),
        _VOICE_FRAMING[request.voice_mode],
        _FAMILIARITY_TONE[request.familiarity],
        "請避免以下已經出現過或過於常見的情境，除非場景明確要求：\n"
        + _bullet_list(excluded),
        (
            "要求：\n"
            "- 日文對話要自然流暢\n"
            "- 使用適當的日文表達方式和助詞\n"
            "- 每句話要簡潔明瞭\n"
            "- 確保對話內容符合場景\n"
            f"- 確保{translation_language}翻譯準確且自然"
        ),
        _format_instructions(translation_language),
    ]
    return "\n\n".join(sections) + _prior_dialogue_section(prior)


def build_messages(
    request: GenerateRequest,
    prior: Optional[PriorContext] = None,
    *,
    translation_language: str = "繁體中文",
) -> list[dict[str, Any]]:
    """Return the system and user messages for one generation request."""

    return [
        {
            "role": "system",
            "content": SYSTEM_PROMPT.format(language=translation_language),
        },
        {
            "role": "user",
            "content": build_user_prompt(
                request, prior, translation_language=translation_language
            ),
        },
    ]


def _strict_schema(node: Any) -> Any:
    """Close every object in a JSON schema and mark all of its properties required."""

    if isinstance(node, dict):
        result = {key: _strict_schema(value) for key, value in node.items()}
        if result.get("type") == "object" and isinstance(result.get("properties"), dict):
            result["additionalProperties"] = False
            result["required"] = list(result["properties"].keys())
        return result
    if isinstance(node, list):
        return [_strict_schema(item) for item in node]
    return node


def dialogue_json_schema() -> dict[str, Any]:
    return _strict_schema(LLMConversation.model_json_schema(by_alias=True))


def build_response_format(supports_json_schema: bool) -> dict[str, Any]:
    """Return the `response_format` block for the provider's capabilities."""

    if not supports_json_schema:
        return {"type": "json_object"}
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "japanese_dialogue",
            "strict": True,
            "schema": dialogue_json_schema(),
        },
    }


__all__ = [
    "DEFAULT_EXCLUDED_SCENARIOS",
    "SYSTEM_PROMPT",
    "build_messages",
    "build_response_format",
    "build_user_prompt",
    "collect_excluded_topics",
    "dialogue_json_schema",
]
