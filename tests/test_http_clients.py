import json

import httpx
import pytest

from app.core.exceptions import CollaboratorFailureError
from app.services.completion_service import CompletionService
from app.services.telegram_service import TelegramService


def _telegram(handler) -> TelegramService:
    service = TelegramService(bot_token="123:abc", api_url="https://tg.test")
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return service


def _completion(handler) -> CompletionService:
    service = CompletionService(api_key="sk-test", base_url="https://llm.test/v1", model="gpt-test")
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return service


@pytest.mark.asyncio
async def test_send_message_posts_json_with_markdown():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 5}})

    service = _telegram(handler)
    result = await service.send_message(42, "*hi*", parse_mode=None)
    await service.send_message(42, "*hi*")

    assert result["ok"] is True
    assert seen[0] == ("/bot123:abc/sendMessage", {"chat_id": 42, "text": "*hi*"})
    assert seen[1][1]["parse_mode"] == "Markdown"
    await service.close()


@pytest.mark.asyncio
async def test_transport_error_becomes_not_ok():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    service = _telegram(handler)
    result = await service.send_message(42, "hi")

    assert result["ok"] is False
    assert "refused" in result["error"]
    await service.close()


@pytest.mark.asyncio
async def test_download_file_resolves_path_first():
    def handler(request):
        if request.url.path.endswith("/getFile"):
            return httpx.Response(200, json={"ok": True, "result": {"file_path": "voice/file_1.oga"}})
        assert request.url.path == "/file/bot123:abc/voice/file_1.oga"
        return httpx.Response(200, content=b"OggS")

    service = _telegram(handler)

    assert await service.download_file("v1") == b"OggS"
    await service.close()


@pytest.mark.asyncio
async def test_get_file_rejection_raises():
    service = _telegram(lambda request: httpx.Response(200, json={"ok": False, "description": "file is too big"}))

    with pytest.raises(CollaboratorFailureError):
        await service.get_file_url("huge")
    await service.close()


@pytest.mark.asyncio
async def test_completion_returns_stripped_content():
    captured = {}

    def handler(request):
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Drink water.\n"}}]})

    service = CompletionService(api_key="sk-test", base_url="https://llm.test/v1", model="gpt-test")
    service._client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        headers={"Authorization": "Bearer sk-test"},
    )

    answer = await service.complete("You are a coach.", "How much water?")

    assert answer == "Drink water."
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["model"] == "gpt-test"
    assert [m["role"] for m in captured["body"]["messages"]] == ["system", "user"]
    await service.close()


@pytest.mark.asyncio
async def test_image_completion_sends_data_url():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    service = _completion(handler)
    await service.complete_with_image("sys", "what is this?", b"\xff\xd8")

    parts = bodies[0]["messages"][1]["content"]
    assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,/9g="
    await service.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, text="upstream exploded"),
    httpx.Response(200, json={"choices": [{"message": {"content": "   "}}]}),
    httpx.Response(200, json={"choices": []}),
])
async def test_completion_failures_raise(response):
    service = _completion(lambda request: response)

    with pytest.raises(CollaboratorFailureError):
        await service.complete("sys", "user")
    await service.close()


@pytest.mark.asyncio
async def test_transcribe_returns_plain_text():
    def handler(request):
        assert request.url.path == "/v1/audio/transcriptions"
        return httpx.Response(200, text=" two glasses of water \n")

    service = _completion(handler)

    assert await service.transcribe(b"OggS") == "two glasses of water"
    with pytest.raises(ValueError):
        await service.transcribe(b"")
    await service.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("method, call", [
    ("sendMessage", lambda service: service.send_message(42, "Ann_Marie")),
    ("editMessageText", lambda service: service.edit_message(42, 7, "Ann_Marie")),
])
async def test_unparsable_markup_is_resent_as_plain_text(method, call):
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if "parse_mode" in body:
            return httpx.Response(400, json={
                "ok": False, "error_code": 400,
                "description": "Bad Request: can't parse entities: Can't find end of the entity starting at byte offset 3",
            })
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

    service = _telegram(handler)
    result = await call(service)

    assert result["ok"] is True
    assert [("parse_mode" in body) for body in bodies] == [True, False]
    assert bodies[1]["text"] == "Ann_Marie"
    await service.close()


@pytest.mark.asyncio
async def test_other_rejections_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})

    service = _telegram(handler)
    result = await service.send_message(42, "hi")

    assert result["ok"] is False
    assert len(calls) == 1
    await service.close()
