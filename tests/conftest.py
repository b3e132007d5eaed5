"""
Shared fixtures: in-memory fakes for the three collaborators and a
FlowContext wired to them.
"""

import asyncio
import itertools
import re
from typing import Any, Dict, List, Optional

import pytest
from pymongo.errors import ConnectionFailure

from app.flow.context import FlowContext
from app.schemas.webhook import CallbackEvent, TextMessage
from app.services.confirmation_service import ConfirmationCache
from app.services.rate_limit_service import RateLimiter
from app.services.session_service import SessionStore
from app.services.store_service import StoreResponse


def _matches(document: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    for key, condition in (filter or {}).items():
        value = document.get(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if value is None:
                    return False
                if op == "$gte" and not value >= operand:
                    return False
                if op == "$lt" and not value < operand:
                    return False
        elif value != condition:
            return False
    return True


class FakeStore:
    """Dict-of-lists store honouring equality, $gte and $lt filters."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.errors: Dict[tuple, str] = {}
        self.unreachable: set = set()
        self._ids = itertools.count(1)

    def fail(self, method: str, table: str, error: str = "duplicate key") -> None:
        self.errors[(method, table)] = error

    def _check(self, method: str, table: str) -> Optional[StoreResponse]:
        self.calls.append((method, table))
        if (method, table) in self.unreachable:
            raise ConnectionFailure("store is down")
        if (method, table) in self.errors:
            return StoreResponse(error=self.errors[(method, table)])
        return None

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def count(self, method: str, table: str) -> int:
        return self.calls.count((method, table))

    async def select(self, table, filter=None, sort=None, limit=0):
        failed = self._check("select", table)
        if failed:
            return failed
        found = [dict(row) for row in self.rows(table) if _matches(row, filter)]
        return StoreResponse(data=found[:limit] if limit else found)

    async def select_one(self, table, filter):
        failed = self._check("select_one", table)
        if failed:
            return failed
        found = next((dict(row) for row in self.rows(table) if _matches(row, filter)), None)
        return StoreResponse(data=found)

    async def insert(self, table, record):
        failed = self._check("insert", table)
        if failed:
            return failed
        row = {**record, "id": str(next(self._ids))}
        self.rows(table).append(row)
        return StoreResponse(data=dict(row))

    async def update(self, table, filter, values):
        failed = self._check("update", table)
        if failed:
            return failed
        for row in self.rows(table):
            if _matches(row, filter):
                row.update(values)
                return StoreResponse(data=dict(row))
        return StoreResponse(error=f"No {table} record matches {filter}")

    async def upsert(self, table, filter, values):
        failed = self._check("upsert", table)
        if failed:
            return failed
        for row in self.rows(table):
            if _matches(row, filter):
                row.update(values)
                return StoreResponse(data=dict(row))
        row = {**filter, **values, "id": str(next(self._ids))}
        self.rows(table).append(row)
        return StoreResponse(data=dict(row))

    async def delete(self, table, filter):
        failed = self._check("delete", table)
        if failed:
            return failed
        kept = [row for row in self.rows(table) if not _matches(row, filter)]
        removed = len(self.rows(table)) - len(kept)
        self.tables[table] = kept
        return StoreResponse(data=removed)

    async def ping(self):
        self._check("ping", "")
        return StoreResponse(data=True)


def markdown_balanced(text: str) -> bool:
    """Telegram rejects Markdown whose unescaped markers do not pair up."""
    unescaped = re.sub(r"\\[_*`\[]", "", text)
    return all(unescaped.count(marker) % 2 == 0 for marker in ("_", "*", "`"))


class FakeTelegram:
    """Records outbound calls instead of sending them."""

    def __init__(self):
        self.strict_markdown = False
        self.rejected: List[str] = []
        self.messages: List[Dict[str, Any]] = []
        self.edits: List[Dict[str, Any]] = []
        self.documents: List[Dict[str, Any]] = []
        self.answered: List[str] = []
        self.files: Dict[str, bytes] = {}
        self.fail_chats: set = set()
        self._message_ids = itertools.count(100)

    async def send_message(self, chat_id, text, reply_markup=None, parse_mode="Markdown"):
        if chat_id in self.fail_chats:
            return {"ok": False, "description": "Forbidden: bot was blocked by the user"}
        if self._unparsable(text, parse_mode):
            return {"ok": False, "description": "Bad Request: can't parse entities"}
        self.messages.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup})
        return {"ok": True, "result": {"message_id": next(self._message_ids)}}

    async def edit_message(self, chat_id, message_id, text, reply_markup=None, parse_mode="Markdown"):
        if self._unparsable(text, parse_mode):
            return {"ok": False, "description": "Bad Request: can't parse entities"}
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text, "reply_markup": reply_markup})
        return {"ok": True}

    def _unparsable(self, text, parse_mode) -> bool:
        if self.strict_markdown and parse_mode and not markdown_balanced(text):
            self.rejected.append(text)
            return True
        return False

    async def send_document(self, chat_id, content, filename, caption=None):
        self.documents.append({"chat_id": chat_id, "content": content, "filename": filename, "caption": caption})
        return {"ok": True}

    async def send_chat_action(self, chat_id, action="typing"):
        return {"ok": True}

    async def answer_callback_query(self, callback_query_id, text=None):
        self.answered.append(callback_query_id)
        return {"ok": True}

    async def download_file(self, file_id):
        return self.files.get(file_id, b"\x00")

    async def get_me(self):
        return {"id": 1, "is_bot": True, "username": "nutripal_bot"}

    @property
    def texts(self) -> List[str]:
        return [m["text"] for m in self.messages]

    @property
    def last_text(self) -> str:
        return self.messages[-1]["text"] if self.messages else ""


class FakeCompletion:
    """Returns queued answers; an Exception in the queue is raised instead."""

    def __init__(self):
        self.answers: List[Any] = []
        self.default = "OK"
        self.calls: List[Dict[str, Any]] = []
        self.transcript = ""
        self.entered: Optional[asyncio.Event] = None
        self.gate: Optional[asyncio.Event] = None

    def hold(self) -> None:
        """Makes the next calls wait until `gate` is set; `entered` marks arrival."""
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def _wait_for_gate(self) -> None:
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()

    def _next(self):
        answer = self.answers.pop(0) if self.answers else self.default
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def complete(self, system_prompt, user_prompt, max_tokens=1000):
        self.calls.append({"system": system_prompt, "user": user_prompt, "max_tokens": max_tokens})
        await self._wait_for_gate()
        return self._next()

    async def complete_with_image(self, system_prompt, user_prompt, image, max_tokens=1000):
        self.calls.append({"system": system_prompt, "user": user_prompt, "image": image})
        return self._next()

    async def transcribe(self, audio, filename="voice.ogg", mime_type="audio/ogg"):
        return self.transcript

    async def ping(self):
        return True


MEAL_JSON = (
    '{"dish_name": "Oatmeal", "ingredients": ["oats", "milk"], "weight_g": 250, '
    '"calories": 300, "protein": 10, "fat": 6, "carbs": 50}'
)

USER_ID = 1001


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def ctx(store, telegram, completion):
    return FlowContext(
        sessions=SessionStore(),
        confirmations=ConfirmationCache(ttl_seconds=1800),
        rate_limiter=RateLimiter(max_requests=20, window_seconds=60),
        store=store,
        telegram=telegram,
        completion=completion,
        completion_budget_ms=1000,
        store_budget_ms=1000,
    )


@pytest.fixture
def profile(store):
    record = {
        "telegram_id": USER_ID,
        "chat_id": USER_ID,
        "first_name": "Ann",
        "gender": "female",
        "age": 29,
        "height_cm": 168,
        "weight_kg": 60.0,
        "goal": "maintain_weight",
        "daily_calories": 1700,
        "daily_protein": 128,
        "daily_fat": 57,
        "daily_carbs": 170,
        "daily_water_ml": 1800,
    }
    store.rows("profiles").append(dict(record))
    return record


def text(body: str, user_id: int = USER_ID) -> TextMessage:
    return TextMessage(user_id=user_id, chat_id=user_id, first_name="Ann", text=body)


def button(data: str, user_id: int = USER_ID, message_id: int = 55) -> CallbackEvent:
    return CallbackEvent(
        user_id=user_id, chat_id=user_id, first_name="Ann",
        callback_id=f"cb-{data}", message_id=message_id, data=data,
    )
