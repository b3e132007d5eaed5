import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.flow.dispatcher import get_dispatcher
from app.main import app
from app.schemas.telegram import TelegramUpdate
from app.schemas.webhook import (
    CallbackEvent,
    DocumentMessage,
    PhotoMessage,
    TextMessage,
    VoiceMessage,
    parse_telegram_update,
)

USER = {"id": 42, "is_bot": False, "first_name": "Ann", "username": "ann"}
CHAT = {"id": 42, "type": "private"}


def _message(**fields):
    return {"update_id": 1, "message": {"message_id": 10, "date": 0, "chat": CHAT, "from": USER, **fields}}


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    async def dispatch(self, event):
        self.events.append(event)


@pytest.fixture
def recorder():
    recorder = RecordingDispatcher()
    app.dependency_overrides[get_dispatcher] = lambda: recorder
    yield recorder
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def test_text_update():
    event = parse_telegram_update(TelegramUpdate.model_validate(_message(text="/start")))

    assert isinstance(event, TextMessage)
    assert (event.user_id, event.chat_id, event.text, event.first_name) == (42, 42, "/start", "Ann")


def test_largest_photo_is_chosen():
    photos = [
        {"file_id": "small", "file_unique_id": "s", "width": 90, "height": 90, "file_size": 1000},
        {"file_id": "large", "file_unique_id": "l", "width": 1280, "height": 1280, "file_size": 90000},
    ]
    event = parse_telegram_update(TelegramUpdate.model_validate(_message(photo=photos, caption="lunch")))

    assert isinstance(event, PhotoMessage)
    assert event.file_ref == "large"


def test_voice_and_document_updates():
    voice = parse_telegram_update(TelegramUpdate.model_validate(
        _message(voice={"file_id": "v1", "file_unique_id": "v", "duration": 3, "mime_type": "audio/ogg"})
    ))
    document = parse_telegram_update(TelegramUpdate.model_validate(
        _message(document={"file_id": "d1", "file_unique_id": "d", "file_name": "labs.txt", "mime_type": "text/plain"})
    ))

    assert isinstance(voice, VoiceMessage) and voice.file_ref == "v1"
    assert isinstance(document, DocumentMessage) and document.file_name == "labs.txt"


def test_callback_update():
    update = TelegramUpdate.model_validate({
        "update_id": 2,
        "callback_query": {
            "id": "cb-1",
            "from": USER,
            "data": "stats_week",
            "message": {"message_id": 77, "date": 0, "chat": CHAT},
        },
    })
    event = parse_telegram_update(update)

    assert isinstance(event, CallbackEvent)
    assert (event.callback_id, event.message_id, event.data) == ("cb-1", 77, "stats_week")


@pytest.mark.parametrize("update", [
    {"update_id": 3, "edited_message": {"message_id": 1, "date": 0, "chat": CHAT, "from": USER, "text": "x"}},
    _message(text="hi", chat={"id": -100, "type": "group"}),
    _message(text="hi", **{"from": {**USER, "is_bot": True}}),
    _message(),
])
def test_unsupported_updates_are_ignored(update):
    assert parse_telegram_update(TelegramUpdate.model_validate(update)) is None


def test_webhook_accepts_and_dispatches(client, recorder, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)

    response = client.post("/api/v1/telegram-webhook", json=_message(text="💧 Water"))

    assert response.status_code == 200
    assert response.json() == {"status": "accepted"}
    assert [e.text for e in recorder.events] == ["💧 Water"]


def test_webhook_ignores_unsupported_update(client, recorder, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)

    response = client.post("/api/v1/telegram-webhook", json=_message())

    assert response.json() == {"status": "ignored"}
    assert recorder.events == []


def test_webhook_rejects_bad_secret(client, recorder, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

    response = client.post(
        "/api/v1/telegram-webhook",
        json=_message(text="hi"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_FAILED"
    assert recorder.events == []


def test_webhook_accepts_matching_secret(client, recorder, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

    response = client.post(
        "/api/v1/telegram-webhook",
        json=_message(text="hi"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
    )

    assert response.json() == {"status": "accepted"}
    assert len(recorder.events) == 1


def test_webhook_rejects_missing_secret(client, recorder, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

    response = client.post("/api/v1/telegram-webhook", json=_message(text="hi"))

    assert response.status_code == 401
    assert recorder.events == []
