# responder.py
import json
import logging
import time
import uuid
from typing import Any, AsyncIterator, Union

from .backend import InferenceBackend
from .errors import BackendError, InvalidRequestError
from .extraction import extract_text, extract_usage
from .models import (
    AssistantMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    Choice,
)
from .stream import is_stream, normalize_stream, pseudo_stream

logger = logging.getLogger("gateway.responder")


def new_request_id() -> str:
    """chatcmpl-<毫秒时间戳>-<8 位随机后缀>，只保证大概率唯一。"""
    return f"chatcmpl-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _valid_message(message: Any) -> bool:
    if not isinstance(message, dict):
        return False
    content = message.get("content")
    role = message.get("role")
    return isinstance(content, str) and bool(content.strip()) and isinstance(role, str) and bool(role)


def parse_request(body: Any, default_model: str) -> ChatCompletionRequest:
    """
    校验请求体并构造 ChatCompletionRequest，任何问题都在调用后端之前抛出 InvalidRequestError。

    Args:
        body (Any): 已解析的 JSON 请求体。
        default_model (str): 未指定 model 时使用的模型。

    Returns:
        ChatCompletionRequest: 只读的请求对象。
    """
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object.")

    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError("`messages` must be a non-empty array.")

    if not all(_valid_message(message) for message in messages):
        raise InvalidRequestError("Each message must include string `role` and non-empty string `content`.")

    model = body.get("model")
    if model is None:
        model = default_model
    elif not isinstance(model, str) or not model.strip():
        raise InvalidRequestError("`model` must be a non-empty string.")

    return ChatCompletionRequest(
        model=model,
        messages=[ChatMessage(**message) for message in messages],
        stream=bool(body.get("stream", False)),
    )


class CompletionResponder:
    def __init__(self, backend: InferenceBackend):
        self.backend = backend

    async def _call_backend(self, request: ChatCompletionRequest, request_id: str, inputs: dict) -> Any:
        try:
            return await self.backend.run(request.model, inputs)
        except BackendError:
            raise
        except Exception as e:
            logger.error(f"[{request_id}] 后端调用失败: {e}")
            raise BackendError(str(e) or "Workers AI call failed.") from e

    async def respond(
        self, request: ChatCompletionRequest
    ) -> Union[ChatCompletionResponse, AsyncIterator[str]]:
        request_id = new_request_id()
        messages = [message.model_dump() for message in request.messages]
        logger.info(f"[{request_id}] {request.model} ({'stream' if request.stream else 'static'}, {len(messages)} messages)")

        if request.stream:
            return await self.stream(request, request_id, messages)
        return await self.complete(request, request_id, messages)

    async def complete(self, request: ChatCompletionRequest, request_id: str, messages: list) -> ChatCompletionResponse:
        result = await self._call_backend(request, request_id, {"messages": messages})
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[{request_id}] 原始响应: {json.dumps(result, indent=2, ensure_ascii=False, default=str)}")

        return ChatCompletionResponse(
            id=request_id,
            created=int(time.time()),
            model=request.model,
            choices=[Choice(message=AssistantMessage(content=extract_text(result)))],
            usage=extract_usage(result),
        )

    async def stream(self, request: ChatCompletionRequest, request_id: str, messages: list) -> AsyncIterator[str]:
        result = await self._call_backend(request, request_id, {"messages": messages, "stream": True})

        backend_stream = None
        if is_stream(result):
            backend_stream = result
        elif isinstance(result, dict) and is_stream(result.get("response")):
            backend_stream = result["response"]

        if backend_stream is None:
            logger.warning(f"[{request_id}] 后端未返回流，退化为单帧伪流")
            return pseudo_stream(extract_text(result), request_id, request.model)

        return normalize_stream(backend_stream, request_id, request.model)
