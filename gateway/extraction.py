# extraction.py
"""
从形态不固定的后端返回值中提取文本和 token 用量。

所有函数都不会抛异常：识别不了的结构退化为原样序列化的文本或全零用量。
"""
import json
import math
from typing import Any, Optional

from .models import Usage

CANDIDATE_KEYS = ("response", "text", "content", "delta", "output_text")

PROMPT_KEYS = ("prompt_tokens", "input_tokens", "promptTokens", "inputTokens")
COMPLETION_KEYS = ("completion_tokens", "output_tokens", "completionTokens", "outputTokens")
TOTAL_KEYS = ("total_tokens", "totalTokens")


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def extract_text_candidates(value: Any) -> list[str]:
    """
    通用候选字段搜索，按 CANDIDATE_KEYS 顺序递归查找非空字符串。

    Args:
        value: 任意结构化值（字符串、列表、字典等）。

    Returns:
        list[str]: 找到的文本片段，可能为空列表。
    """
    if isinstance(value, str):
        return [value] if value else []

    if isinstance(value, list):
        results = []
        for item in value:
            results.extend(extract_text_candidates(item))
        return results

    if isinstance(value, dict):
        results = []
        for key in CANDIDATE_KEYS:
            results.extend(extract_text_candidates(value.get(key)))
        return results

    return []


def extract_delta_text(value: Any) -> list[str]:
    """从单个流式帧里取出增量文本，支持 Workers AI 和 OpenAI 两种帧形态。"""
    if not isinstance(value, dict):
        return []

    out = []
    for key in ("response", "output_text", "text"):
        if _non_empty_str(value.get(key)):
            out.append(value[key])

    delta = value.get("delta")
    if isinstance(delta, dict) and _non_empty_str(delta.get("content")):
        out.append(delta["content"])

    choices = value.get("choices")
    if isinstance(choices, list):
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            choice_delta = choice.get("delta")
            if isinstance(choice_delta, dict) and _non_empty_str(choice_delta.get("content")):
                out.append(choice_delta["content"])
            if _non_empty_str(choice.get("text")):
                out.append(choice["text"])

    return out


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def extract_text(result: Any) -> str:
    """按从具体到通用的顺序提取回复文本，全部失败时返回原值的 JSON。"""
    if isinstance(result, str):
        return result
    if not isinstance(result, dict):
        return _dump(result)

    if isinstance(result.get("response"), str):
        return result["response"]

    container = result.get("result")
    if isinstance(container, dict):
        if isinstance(container.get("response"), str):
            return container["response"]
        if isinstance(container.get("output_text"), str):
            return container["output_text"]

    output = result.get("output")
    if isinstance(output, list):
        parts = []
        for item in output:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        text = "".join(parts).strip()
        if text:
            return text

    return _dump(result)


def to_number(value: Any) -> Optional[float]:
    """有限数值或可解析为有限数值的字符串，其余一律视为缺失。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _first_number(source: dict, keys) -> Optional[float]:
    for key in keys:
        number = to_number(source.get(key))
        if number is not None:
            return number
    return None


def _token_count(value: Optional[float]) -> int:
    # token 数不允许为负
    return max(int(value), 0) if value is not None else 0


def usage_from_object(source: dict) -> Optional[Usage]:
    prompt = _first_number(source, PROMPT_KEYS)
    completion = _first_number(source, COMPLETION_KEYS)
    total = _first_number(source, TOTAL_KEYS)

    if prompt is None and completion is None and total is None:
        return None

    prompt_tokens = _token_count(prompt)
    completion_tokens = _token_count(completion)
    if total is None and prompt is not None and completion is not None:
        total_tokens = prompt_tokens + completion_tokens
    else:
        total_tokens = _token_count(total)

    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


def extract_usage(result: Any) -> Usage:
    """依次检查 result、result.usage、result.result、result.result.usage，先命中者整体胜出。"""
    if not isinstance(result, dict):
        return Usage()

    locations = [result, result.get("usage")]
    nested = result.get("result")
    if isinstance(nested, dict):
        locations.extend([nested, nested.get("usage")])

    for location in locations:
        if not isinstance(location, dict):
            continue
        usage = usage_from_object(location)
        if usage is not None:
            return usage

    return Usage()
