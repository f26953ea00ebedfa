# framing.py
import time
from typing import Optional

from .models import ChatCompletionChunk, ChunkChoice

SSE_DONE = "data: [DONE]\n\n"


def create_chunk(
    request_id: str,
    model: str,
    content: Optional[str],
    finish_reason: Optional[str] = None,
) -> ChatCompletionChunk:
    """
    构造单个 chat.completion.chunk。

    content 为 None 时 delta 为空对象；空字符串也会原样放进 delta，过滤由调用方负责。
    """
    return ChatCompletionChunk(
        id=request_id,
        created=int(time.time()),
        model=model,
        choices=[
            ChunkChoice(
                delta={} if content is None else {"content": content},
                finish_reason=finish_reason,
            )
        ],
    )


def sse_data(chunk: ChatCompletionChunk) -> str:
    return f"data: {chunk.model_dump_json()}\n\n"


def stop_frame(request_id: str, model: str) -> str:
    return sse_data(create_chunk(request_id, model, None, "stop"))
