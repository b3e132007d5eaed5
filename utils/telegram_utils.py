"""
utils/telegram_utils.py

Purpose: Telegram message builders

- Inline keyboards built from typed callback actions
- Main-menu reply keyboard
- Progress bars and small text formatting helpers
"""

from typing import Any, Dict, List, Sequence, Tuple

from app.flow import callbacks
from app.flow.callbacks import (
    Action,
    ChallengeAction,
    MealAction,
    PlanAction,
    ProfileAction,
    RegisterAction,
    StatsAction,
    WaterAction,
)
from app.flow.states import QuestionSpec
from utils import constants


def create_inline_keyboard(rows: Sequence[Sequence[Tuple[str, Action]]]) -> Dict[str, Any]:
    """
    Creates an inline keyboard markup.

    Args:
        rows: Rows of (label, action) pairs; actions are encoded with the
              callback codec

    Returns:
        reply_markup payload
    """
    return {
        "inline_keyboard": [
            [{"text": label, "callback_data": callbacks.encode(action)} for label, action in row]
            for row in rows
        ]
    }


def create_reply_keyboard(rows: Sequence[Sequence[str]], one_time: bool = False) -> Dict[str, Any]:
    return {
        "keyboard": [[{"text": label} for label in row] for row in rows],
        "resize_keyboard": True,
        "one_time_keyboard": one_time,
    }


def main_menu_keyboard() -> Dict[str, Any]:
    return create_reply_keyboard(constants.MAIN_MENU_ROWS)


def remove_keyboard() -> Dict[str, Any]:
    return {"remove_keyboard": True}


def gender_keyboard() -> Dict[str, Any]:
    return create_inline_keyboard([[
        (constants.BTN_MALE, RegisterAction(field="gender", value="male")),
        (constants.BTN_FEMALE, RegisterAction(field="gender", value="female")),
    ]])


def goal_keyboard() -> Dict[str, Any]:
    return create_inline_keyboard([
        [(constants.BTN_GOAL_LOSE, RegisterAction(field="goal", value="lose_weight"))],
        [(constants.BTN_GOAL_MAINTAIN, RegisterAction(field="goal", value="maintain_weight"))],
        [(constants.BTN_GOAL_GAIN, RegisterAction(field="goal", value="gain_mass"))],
    ])


def meal_confirmation_keyboard(token: str) -> Dict[str, Any]:
    """Confirm and cancel share one token; only the verb differs."""
    return create_inline_keyboard([[
        (constants.BTN_CONFIRM, MealAction(verb="confirm", token=token)),
        (constants.BTN_CANCEL, MealAction(verb="cancel", token=token)),
    ]])


def stats_keyboard() -> Dict[str, Any]:
    return create_inline_keyboard([[
        (constants.BTN_TODAY, StatsAction(period="today")),
        (constants.BTN_WEEK, StatsAction(period="week")),
        (constants.BTN_MONTH, StatsAction(period="month")),
    ]])


def water_keyboard() -> Dict[str, Any]:
    quick = [
        (f"+{amount} ml", WaterAction(verb="add", amount_ml=amount))
        for amount in constants.WATER_QUICK_AMOUNTS
    ]
    return create_inline_keyboard([
        quick,
        [(constants.BTN_WATER_CUSTOM, WaterAction(verb="custom"))],
    ])


def plan_reuse_keyboard(domain: str) -> Dict[str, Any]:
    return create_inline_keyboard([
        [(constants.BTN_YES, PlanAction(domain=domain, verb="yes"))],
        [(constants.BTN_NO, PlanAction(domain=domain, verb="no"))],
        [(constants.BTN_RESTART, PlanAction(domain=domain, verb="restart"))],
    ])


def question_keyboard(domain: str, index: int, question: QuestionSpec) -> Dict[str, Any]:
    """One button per choice, each carrying the question index."""
    return create_inline_keyboard([
        [(label, PlanAction(domain=domain, verb="ans", step_index=index, value=value))]
        for value, label in question.choices
    ])


def profile_edit_keyboard() -> Dict[str, Any]:
    return create_inline_keyboard([
        [
            ("✏️ Name", ProfileAction(verb="edit", field="name")),
            ("✏️ Age", ProfileAction(verb="edit", field="age")),
        ],
        [
            ("✏️ Height", ProfileAction(verb="edit", field="height")),
            ("✏️ Weight", ProfileAction(verb="edit", field="weight")),
        ],
    ])


def challenge_keyboard() -> Dict[str, Any]:
    return create_inline_keyboard([[
        (constants.BTN_CHALLENGE_PROGRESS, ChallengeAction(verb="progress")),
    ]])


def progress_bar(value: float, target: float, width: int = 10) -> str:
    """
    Renders "[■■■□□□□□□□] 30%". Percent may exceed 100; the bar caps at full.
    """
    if not target or target <= 0:
        return f"[{'□' * width}] 0%"
    percent = round(value / target * 100)
    filled = min(width, max(0, round(value / target * width)))
    return f"[{'■' * filled}{'□' * (width - filled)}] {percent}%"


def format_number(value: float) -> str:
    """12345.6 -> "12 346"."""
    return f"{round(value):,}".replace(",", " ")


def escape_markdown(value: Any) -> str:
    """
    Escapes user or model text for a Markdown reply.

    Only valid outside an entity: Telegram does not allow escapes inside
    *bold* or _italic_ spans.
    """
    text = "" if value is None else str(value)
    for char in ("_", "*", "`", "["):
        text = text.replace(char, f"\\{char}")
    return text


def split_long_text(text: str, limit: int = 4000) -> List[str]:
    """Splits text on paragraph boundaries to fit Telegram's message limit."""
    if len(text) <= limit:
        return [text]
    parts: List[str] = []
    current = ""
    for paragraph in text.split("\n\n"):
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            parts.append(current)
        while len(paragraph) > limit:
            parts.append(paragraph[:limit])
            paragraph = paragraph[limit:]
        current = paragraph
    if current:
        parts.append(current)
    return parts
