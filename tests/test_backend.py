from unittest.mock import MagicMock

import pytest
import requests

from gateway.backend import WorkersAIBackend
from gateway.config import Settings
from gateway.errors import BackendError

SETTINGS = Settings(auth_token="secret", account_id="acct", api_token="cf-token", timeout=5)


def fake_response(status=200, json_body=None, content_type="application/json", chunks=(), text=""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.headers = {"Content-Type": content_type}
    response.text = text
    if json_body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_body
    response.iter_content.return_value = iter(chunks)
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    return response


def make_backend(response=None, error=None):
    session = MagicMock(spec=requests.Session)
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    return WorkersAIBackend(SETTINGS, session=session), session


@pytest.mark.asyncio
async def test_non_streaming_call():
    body = {"result": {"response": "hi"}, "success": True, "errors": []}
    backend, session = make_backend(fake_response(json_body=body))

    result = await backend.run("@cf/meta/llama-3.1-8b-instruct", {"messages": []})

    assert result == body
    args, kwargs = session.post.call_args
    assert args[0] == "https://api.cloudflare.com/client/v4/accounts/acct/ai/run/@cf/meta/llama-3.1-8b-instruct"
    assert kwargs["headers"]["Authorization"] == "Bearer cf-token"
    assert kwargs["json"] == {"messages": []}
    assert kwargs["timeout"] == 5
    assert kwargs["stream"] is False


@pytest.mark.asyncio
async def test_streaming_call_returns_byte_iterator():
    response = fake_response(content_type="text/event-stream", chunks=[b"data: a\n\n", b"", b"data: b\n\n"])
    backend, session = make_backend(response)

    result = await backend.run("m", {"messages": [], "stream": True})

    assert list(result) == [b"data: a\n\n", b"data: b\n\n"]
    assert session.post.call_args.kwargs["stream"] is True
    response.close.assert_called()


@pytest.mark.asyncio
async def test_streaming_call_with_json_reply_falls_back_to_object():
    backend, _ = make_backend(fake_response(json_body={"response": "whole"}))
    assert await backend.run("m", {"messages": [], "stream": True}) == {"response": "whole"}


@pytest.mark.asyncio
async def test_http_error_uses_workers_ai_message():
    body = {"success": False, "errors": [{"code": 5007, "message": "No such model"}]}
    backend, _ = make_backend(fake_response(status=400, json_body=body))

    with pytest.raises(BackendError, match="No such model"):
        await backend.run("m", {"messages": []})


@pytest.mark.asyncio
async def test_http_error_without_json_uses_status():
    backend, _ = make_backend(fake_response(status=502, text=""))

    with pytest.raises(BackendError, match="HTTP 502"):
        await backend.run("m", {"messages": []})


@pytest.mark.asyncio
async def test_connection_error():
    backend, _ = make_backend(error=requests.exceptions.ConnectionError("refused"))

    with pytest.raises(BackendError, match="refused"):
        await backend.run("m", {"messages": []})


@pytest.mark.asyncio
async def test_missing_credentials():
    backend = WorkersAIBackend(Settings(auth_token="secret"), session=MagicMock())

    with pytest.raises(BackendError, match="credentials"):
        await backend.run("m", {"messages": []})
