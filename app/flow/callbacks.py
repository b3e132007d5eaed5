"""
app/flow/callbacks.py

Purpose: Inline button payload codec

- Typed action per domain (register, meal, stats, water, workout,
  nutrition, profile, challenge)
- One encode/decode pair per domain
- Wire format: "<domain>_<verb>[_<params>...]", at most 64 bytes
- The first "_" selects the domain; each decoder owns its tail, so
  values containing "_" (lose_weight, lactose_free) survive the trip
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from app.core.exceptions import CallbackDecodeError

SEPARATOR = "_"
MAX_CALLBACK_BYTES = 64  # Telegram limit for callback_data


@dataclass(frozen=True)
class RegisterAction:
    field: str  # "gender" | "goal"
    value: str


@dataclass(frozen=True)
class MealAction:
    verb: str  # "confirm" | "cancel"
    token: str


@dataclass(frozen=True)
class StatsAction:
    period: str  # "today" | "week" | "month"


@dataclass(frozen=True)
class WaterAction:
    verb: str  # "add" | "custom"
    amount_ml: Optional[int] = None


@dataclass(frozen=True)
class PlanAction:
    domain: str  # "workout" | "nutrition"
    verb: str  # "yes" | "no" | "restart" | "ans"
    step_index: Optional[int] = None
    value: Optional[str] = None


@dataclass(frozen=True)
class ProfileAction:
    verb: str  # "edit"
    field: str


@dataclass(frozen=True)
class ChallengeAction:
    verb: str  # "progress"


Action = Union[
    RegisterAction,
    MealAction,
    StatsAction,
    WaterAction,
    PlanAction,
    ProfileAction,
    ChallengeAction,
]


GENDER_VALUES = ("male", "female")
# Goal values are shortened on the wire
GOAL_WIRE = {"lose_weight": "lose", "maintain_weight": "maintain", "gain_mass": "gain"}
GOAL_FROM_WIRE = {wire: goal for goal, wire in GOAL_WIRE.items()}
MEAL_VERBS = ("confirm", "cancel")
STATS_PERIODS = ("today", "week", "month")
PLAN_DOMAINS = ("workout", "nutrition")
PLAN_BRANCH_VERBS = ("yes", "no", "restart")
PROFILE_FIELDS = ("name", "age", "height", "weight")
CHALLENGE_VERBS = ("progress",)


def _join(*parts: object) -> str:
    return SEPARATOR.join(str(part) for part in parts)


def _fail(raw: str, reason: str) -> CallbackDecodeError:
    return CallbackDecodeError(raw, reason)


def _is_number(part: str) -> bool:
    return re.fullmatch(r"[0-9]+", part) is not None


# ------------------------------------------------------------------
# register_gender_<male|female>, register_goal_<lose|maintain|gain>
# ------------------------------------------------------------------

def encode_register(action: RegisterAction) -> str:
    if action.field == "gender" and action.value in GENDER_VALUES:
        return _join("register", "gender", action.value)
    if action.field == "goal" and action.value in GOAL_WIRE:
        return _join("register", "goal", GOAL_WIRE[action.value])
    raise ValueError(f"Cannot encode {action!r}")


def decode_register(raw: str, tail: List[str]) -> RegisterAction:
    if len(tail) != 2:
        raise _fail(raw, "register expects field and value")
    field, value = tail
    if field == "gender" and value in GENDER_VALUES:
        return RegisterAction(field="gender", value=value)
    if field == "goal" and value in GOAL_FROM_WIRE:
        return RegisterAction(field="goal", value=GOAL_FROM_WIRE[value])
    raise _fail(raw, "unknown registration choice")


# ------------------------------------------------------------------
# meal_<confirm|cancel>_<token>
# ------------------------------------------------------------------

def encode_meal(action: MealAction) -> str:
    if action.verb not in MEAL_VERBS or not action.token:
        raise ValueError(f"Cannot encode {action!r}")
    return _join("meal", action.verb, action.token)


def decode_meal(raw: str, tail: List[str]) -> MealAction:
    if len(tail) < 2 or tail[0] not in MEAL_VERBS:
        raise _fail(raw, "meal expects confirm|cancel and a token")
    token = SEPARATOR.join(tail[1:])
    if not token:
        raise _fail(raw, "meal token is empty")
    return MealAction(verb=tail[0], token=token)


# ------------------------------------------------------------------
# stats_<today|week|month>
# ------------------------------------------------------------------

def encode_stats(action: StatsAction) -> str:
    if action.period not in STATS_PERIODS:
        raise ValueError(f"Cannot encode {action!r}")
    return _join("stats", action.period)


def decode_stats(raw: str, tail: List[str]) -> StatsAction:
    if len(tail) != 1 or tail[0] not in STATS_PERIODS:
        raise _fail(raw, "unknown stats period")
    return StatsAction(period=tail[0])


# ------------------------------------------------------------------
# water_add_<ml>, water_custom
# ------------------------------------------------------------------

def encode_water(action: WaterAction) -> str:
    if action.verb == "add" and action.amount_ml and action.amount_ml > 0:
        return _join("water", "add", action.amount_ml)
    if action.verb == "custom" and action.amount_ml is None:
        return _join("water", "custom")
    raise ValueError(f"Cannot encode {action!r}")


def decode_water(raw: str, tail: List[str]) -> WaterAction:
    if tail == ["custom"]:
        return WaterAction(verb="custom")
    if len(tail) == 2 and tail[0] == "add" and _is_number(tail[1]) and int(tail[1]) > 0:
        return WaterAction(verb="add", amount_ml=int(tail[1]))
    raise _fail(raw, "water expects add_<ml> or custom")


# ------------------------------------------------------------------
# <workout|nutrition>_<yes|no|restart>, <workout|nutrition>_ans_<index>_<value>
# ------------------------------------------------------------------

def encode_plan(action: PlanAction) -> str:
    if action.domain not in PLAN_DOMAINS:
        raise ValueError(f"Cannot encode {action!r}")
    if action.verb in PLAN_BRANCH_VERBS and action.step_index is None and action.value is None:
        return _join(action.domain, action.verb)
    if action.verb == "ans" and action.step_index is not None and action.step_index >= 0 and action.value:
        return _join(action.domain, "ans", action.step_index, action.value)
    raise ValueError(f"Cannot encode {action!r}")


def _plan_decoder(domain: str) -> Callable[[str, List[str]], PlanAction]:
    def decode_plan(raw: str, tail: List[str]) -> PlanAction:
        if len(tail) == 1 and tail[0] in PLAN_BRANCH_VERBS:
            return PlanAction(domain=domain, verb=tail[0])
        if len(tail) >= 3 and tail[0] == "ans" and _is_number(tail[1]):
            value = SEPARATOR.join(tail[2:])
            if value:
                return PlanAction(domain=domain, verb="ans", step_index=int(tail[1]), value=value)
        raise _fail(raw, f"{domain} expects yes|no|restart or ans_<index>_<value>")
    return decode_plan


# ------------------------------------------------------------------
# profile_edit_<field>
# ------------------------------------------------------------------

def encode_profile(action: ProfileAction) -> str:
    if action.verb != "edit" or not action.field:
        raise ValueError(f"Cannot encode {action!r}")
    return _join("profile", "edit", action.field)


def decode_profile(raw: str, tail: List[str]) -> ProfileAction:
    if len(tail) < 2 or tail[0] != "edit":
        raise _fail(raw, "profile expects edit_<field>")
    # The field is not checked against PROFILE_FIELDS here; an unknown
    # field reaching the edit flow is an internal inconsistency.
    return ProfileAction(verb="edit", field=SEPARATOR.join(tail[1:]))


# ------------------------------------------------------------------
# challenge_progress
# ------------------------------------------------------------------

def encode_challenge(action: ChallengeAction) -> str:
    if action.verb not in CHALLENGE_VERBS:
        raise ValueError(f"Cannot encode {action!r}")
    return _join("challenge", action.verb)


def decode_challenge(raw: str, tail: List[str]) -> ChallengeAction:
    if len(tail) != 1 or tail[0] not in CHALLENGE_VERBS:
        raise _fail(raw, "unknown challenge action")
    return ChallengeAction(verb=tail[0])


ENCODERS: Dict[type, Callable[[Action], str]] = {
    RegisterAction: encode_register,
    MealAction: encode_meal,
    StatsAction: encode_stats,
    WaterAction: encode_water,
    PlanAction: encode_plan,
    ProfileAction: encode_profile,
    ChallengeAction: encode_challenge,
}

DECODERS: Dict[str, Callable[[str, List[str]], Action]] = {
    "register": decode_register,
    "meal": decode_meal,
    "stats": decode_stats,
    "water": decode_water,
    "workout": _plan_decoder("workout"),
    "nutrition": _plan_decoder("nutrition"),
    "profile": decode_profile,
    "challenge": decode_challenge,
}


def encode(action: Action) -> str:
    """
    Encodes an action into callback_data.

    Raises:
        ValueError: If the action is malformed or exceeds the payload limit
    """
    encoder = ENCODERS.get(type(action))
    if encoder is None:
        raise ValueError(f"No encoder for {type(action).__name__}")
    raw = encoder(action)
    if len(raw.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"Callback payload exceeds {MAX_CALLBACK_BYTES} bytes: {raw!r}")
    return raw


def decode(raw: str) -> Action:
    """
    Decodes callback_data into a typed action.

    Raises:
        CallbackDecodeError: If the domain is unknown or the tail is malformed
    """
    if not raw or SEPARATOR not in raw:
        raise _fail(raw or "", "missing domain separator")
    domain, *tail = raw.split(SEPARATOR)
    decoder = DECODERS.get(domain)
    if decoder is None:
        raise _fail(raw, f"unknown domain {domain!r}")
    return decoder(raw, tail)
