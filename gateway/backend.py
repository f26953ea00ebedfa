# backend.py
import logging
from typing import Any, Iterator, Optional, Protocol, Union

import requests
from fastapi.concurrency import run_in_threadpool

from .config import Settings
from .errors import BackendError

logger = logging.getLogger("gateway.backend")

BackendReply = Union[dict, Iterator[bytes], Any]


class InferenceBackend(Protocol):
    async def run(self, model: str, inputs: dict) -> BackendReply:
        ...


class WorkersAIBackend:
    """
    Cloudflare Workers AI REST 客户端。

    非流式调用返回解析后的 JSON；流式调用在上游返回 text/event-stream 时
    返回原始字节迭代器，否则退化为 JSON 对象，由调用方决定如何处理。
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def _url(self, model: str) -> str:
        return f"{self.settings.endpoint}/accounts/{self.settings.account_id}/ai/run/{model}"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.api_token}",
            "Content-Type": "application/json",
        }

    async def run(self, model: str, inputs: dict) -> BackendReply:
        if not self.settings.account_id or not self.settings.api_token:
            raise BackendError("Workers AI credentials are not configured.")
        return await run_in_threadpool(self._run, model, inputs)

    def _run(self, model: str, inputs: dict) -> BackendReply:
        stream = bool(inputs.get("stream"))
        try:
            response = self.session.post(
                self._url(model),
                json=inputs,
                headers=self._headers(),
                timeout=self.settings.timeout,
                stream=stream,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            message = _error_message(e.response)
            logger.error(f"上游API错误: {e.response.status_code} - {message}")
            e.response.close()
            raise BackendError(message) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"上游API连接失败: {str(e)}")
            raise BackendError(str(e)) from e

        content_type = response.headers.get("Content-Type", "")
        if stream and "text/event-stream" in content_type:
            logger.debug(f"上游返回流式响应 ({model})")
            return _iter_body(response)

        try:
            return response.json()
        except ValueError:
            # 非 JSON 响应交给提取逻辑原样处理
            return response.text
        finally:
            response.close()


def _iter_body(response: requests.Response) -> Iterator[bytes]:
    try:
        for chunk in response.iter_content(chunk_size=None):
            if chunk:
                yield chunk
    finally:
        response.close()


def _error_message(response: requests.Response) -> str:
    """优先使用 Workers AI 的 errors[0].message，其次是响应正文。"""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
            if message:
                return str(message)
    text = response.text.strip()
    return text or f"Workers AI returned HTTP {response.status_code}."
