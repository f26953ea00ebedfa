# stream.py
"""
把推理后端的原始流转换成 OpenAI 格式的 SSE 帧。

后端每次读取可能得到：
- str：现成的增量文本，直接发出
- dict：结构化帧，按增量字段提取
- bytes：增量解码后追加到缓冲区，按空行切分成事件

流结束后发出一个 stop chunk 和 [DONE]。读取出错时记录日志并向上抛出，不再发出任何帧。
"""
import codecs
import json
import logging
import re
from collections.abc import Iterator
from typing import Any, AsyncIterator

from fastapi.concurrency import iterate_in_threadpool

from .extraction import extract_delta_text, extract_text_candidates
from .framing import SSE_DONE, create_chunk, sse_data, stop_frame

logger = logging.getLogger("gateway.stream")

EVENT_BOUNDARY = re.compile(r"\r?\n\r?\n")
LINE_BOUNDARY = re.compile(r"\r?\n")


def is_stream(value: Any) -> bool:
    """异步可迭代对象或普通迭代器（生成器、iter_content 等）视为流。"""
    if isinstance(value, (str, bytes, bytearray, dict, list, tuple)):
        return False
    return hasattr(value, "__aiter__") or isinstance(value, Iterator)


def _event_texts(event: str) -> list[str]:
    """处理一个完整事件，返回其中的增量文本。"""
    lines = [line.strip() for line in LINE_BOUNDARY.split(event)]
    data_lines = [line for line in lines if line.startswith("data:")]

    if not data_lines:
        # 只有 SSE 注释（": keep-alive"）的事件不是内容
        if all(not line or line.startswith(":") for line in lines):
            return []
        return _fallback_texts(event)

    texts = []
    for line in data_lines:
        raw = line[5:].strip()
        if not raw or raw == "[DONE]":
            continue
        try:
            parsed = json.loads(raw)
        except ValueError:
            # 不是 JSON 就原样作为增量
            texts.append(raw)
            continue
        texts.extend(extract_delta_text(parsed))
    return texts


def _fallback_texts(text: str) -> list[str]:
    """没有 SSE 分帧的后端：能解析成 JSON 对象就做候选搜索，搜不到或解析失败时用原文。"""
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, (dict, list)):
        texts = extract_text_candidates(parsed)
        if texts:
            return texts
    return extract_text_candidates(text)


async def normalize_stream(backend_stream: Any, request_id: str, model: str) -> AsyncIterator[str]:
    """
    单遍、只进的惰性序列：每次读取后端后，先把能推导出的帧全部产出，再读下一次。

    Args:
        backend_stream: 异步可迭代对象或阻塞迭代器（在线程池中读取）。
        request_id: chatcmpl-... 标识。
        model: 回写到每个 chunk 的模型名。
    """
    source = backend_stream
    reader = source if hasattr(source, "__aiter__") else iterate_in_threadpool(source)
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    emitted = 0

    def frame(text: str) -> str:
        return sse_data(create_chunk(request_id, model, text, None))

    try:
        async for value in reader:
            if isinstance(value, str):
                if value:
                    emitted += 1
                    yield frame(value)
                continue

            if isinstance(value, dict):
                for text in extract_delta_text(value):
                    emitted += 1
                    yield frame(text)
                continue

            if not isinstance(value, (bytes, bytearray, memoryview)):
                for text in extract_text_candidates(value):
                    emitted += 1
                    yield frame(text)
                continue

            buffer += decoder.decode(bytes(value))
            parts = EVENT_BOUNDARY.split(buffer)
            buffer = parts.pop()

            for part in parts:
                for text in _event_texts(part):
                    emitted += 1
                    yield frame(text)

        buffer += decoder.decode(b"", final=True)
        if buffer.strip():
            for text in _fallback_texts(buffer):
                emitted += 1
                yield frame(text)
    except Exception as e:
        logger.error(f"[{request_id}] 读取后端流失败（已发出 {emitted} 帧）: {e}")
        raise
    finally:
        await _close(source)

    logger.info(f"[{request_id}] 流式传输完成，共 {emitted} 个内容帧")
    yield stop_frame(request_id, model)
    yield SSE_DONE


async def _close(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()
        return
    close = getattr(source, "close", None)
    if close is None:
        return
    try:
        close()
    except ValueError as e:
        # 线程池里的 next() 仍在执行时生成器无法关闭，交给其自身的 finally
        logger.debug(f"关闭后端流失败: {e}")


async def pseudo_stream(text: str, request_id: str, model: str) -> AsyncIterator[str]:
    """后端忽略 stream 标志返回普通结果时，合成一个完整的 SSE 响应。"""
    yield sse_data(create_chunk(request_id, model, text, None))
    yield stop_frame(request_id, model)
    yield SSE_DONE
