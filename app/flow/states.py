"""
app/flow/states.py

Purpose: Defines all dialogue flows and their steps

- FlowKind enum, declared in dispatcher priority order
- Step enums for each flow
- Explicit transition tables (step -> expected input, parser, next step)
- Questionnaire definitions for the workout and nutrition plans
- State transition validation
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.exceptions import InternalInconsistencyError
from utils.validation_utils import (
    parse_age,
    parse_height,
    parse_int_in_range,
    parse_manual_meal,
    parse_name,
    parse_steps,
    parse_water_ml,
    parse_weight,
    sanitize_input,
)


class FlowKind(str, Enum):
    """
    Every flow a user can be in. Declaration order is the order in which
    the dispatcher checks a user's slots, so exactly one flow claims a
    given message.
    """

    REGISTRATION = "registration"
    MANUAL_ADD = "manual_add"
    WORKOUT_PLAN = "workout_plan"
    NUTRITION_PLAN = "nutrition_plan"
    WATER_WAIT = "water_wait"
    STEPS_WAIT = "steps_wait"
    PROFILE_EDIT = "profile_edit"
    QUESTION_WAIT = "question_wait"
    MEDICAL_WAIT = "medical_wait"


FLOW_PRIORITY: List[FlowKind] = list(FlowKind)


class InputKind(str, Enum):
    TEXT = "text"
    CALLBACK = "callback"
    NONE = "none"  # waiting on a collaborator, no user input expected


class RegistrationStep(str, Enum):
    ASK_NAME = "ask_name"
    ASK_GENDER = "ask_gender"
    ASK_AGE = "ask_age"
    ASK_HEIGHT = "ask_height"
    ASK_WEIGHT = "ask_weight"
    ASK_GOAL = "ask_goal"


class MealStep(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    RECOGNIZING = "recognizing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class WorkoutStep(str, Enum):
    CONFIRM_REUSE = "confirm_reuse"
    ASK_GOAL = "ask_goal"
    ASK_EXPERIENCE = "ask_experience"
    ASK_LOCATION = "ask_location"
    ASK_DAYS = "ask_days"
    ASK_DURATION = "ask_duration"
    GENERATING = "generating"


class NutritionStep(str, Enum):
    CONFIRM_REUSE = "confirm_reuse"
    ASK_GOAL = "ask_goal"
    ASK_ACTIVITY = "ask_activity"
    ASK_MEALS = "ask_meals"
    ASK_RESTRICTIONS = "ask_restrictions"
    GENERATING = "generating"


class ProfileEditStep(str, Enum):
    AWAIT_VALUE = "await_value"


class CaptureStep(str, Enum):
    AWAIT_TEXT = "await_text"


@dataclass(frozen=True)
class StepSpec:
    """
    One row of a flow's transition table.

    `next_step` of None means the step ends in the flow's terminal action
    (persist, synthesize, answer). `also_allowed` lists extra legal targets
    such as branching or rollback after a failed collaborator call.
    """
    expects: InputKind
    field: Optional[str] = None
    parser: Optional[Callable[[str], Any]] = None
    choices: Tuple[str, ...] = ()
    next_step: Optional[str] = None
    also_allowed: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QuestionSpec:
    """A questionnaire step: single choice via buttons, or a typed number."""
    step: str
    key: str
    prompt: str
    choices: Tuple[Tuple[str, str], ...] = ()
    parser: Optional[Callable[[str], Any]] = None

    @property
    def is_choice(self) -> bool:
        return bool(self.choices)

    def label_for(self, value: str) -> str:
        return dict(self.choices).get(value, value)


GENDERS = ("male", "female")
GOALS = ("lose_weight", "maintain_weight", "gain_mass")


REGISTRATION_FLOW: Dict[str, StepSpec] = {
    RegistrationStep.ASK_NAME.value: StepSpec(
        expects=InputKind.TEXT, field="first_name", parser=parse_name,
        next_step=RegistrationStep.ASK_GENDER.value,
    ),
    RegistrationStep.ASK_GENDER.value: StepSpec(
        expects=InputKind.CALLBACK, field="gender", choices=GENDERS,
        next_step=RegistrationStep.ASK_AGE.value,
    ),
    RegistrationStep.ASK_AGE.value: StepSpec(
        expects=InputKind.TEXT, field="age", parser=parse_age,
        next_step=RegistrationStep.ASK_HEIGHT.value,
    ),
    RegistrationStep.ASK_HEIGHT.value: StepSpec(
        expects=InputKind.TEXT, field="height_cm", parser=parse_height,
        next_step=RegistrationStep.ASK_WEIGHT.value,
    ),
    RegistrationStep.ASK_WEIGHT.value: StepSpec(
        expects=InputKind.TEXT, field="weight_kg", parser=parse_weight,
        next_step=RegistrationStep.ASK_GOAL.value,
    ),
    RegistrationStep.ASK_GOAL.value: StepSpec(
        expects=InputKind.CALLBACK, field="goal", choices=GOALS,
        next_step=None,
    ),
}


MANUAL_ADD_FLOW: Dict[str, StepSpec] = {
    MealStep.AWAITING_INPUT.value: StepSpec(
        expects=InputKind.TEXT, field="entry", parser=parse_manual_meal,
        next_step=MealStep.RECOGNIZING.value,
    ),
    MealStep.RECOGNIZING.value: StepSpec(
        expects=InputKind.NONE,
        next_step=MealStep.AWAITING_CONFIRMATION.value,
        also_allowed=(MealStep.AWAITING_INPUT.value,),
    ),
    MealStep.AWAITING_CONFIRMATION.value: StepSpec(
        expects=InputKind.CALLBACK, choices=("confirm", "cancel"),
        next_step=None,
    ),
}


def _days_per_week(text: str) -> int:
    return parse_int_in_range(text, 2, 6, "Please send a number of training days from 2 to 6.")


def _session_minutes(text: str) -> int:
    return parse_int_in_range(text, 20, 120, "Please send the session length in minutes (20 to 120).")


def _meals_per_day(text: str) -> int:
    return parse_int_in_range(text, 3, 6, "Please send the number of meals per day (3 to 6).")


WORKOUT_QUESTIONS: List[QuestionSpec] = [
    QuestionSpec(
        step=WorkoutStep.ASK_GOAL.value,
        key="goal",
        prompt="🎯 What is your main training goal?",
        choices=(
            ("lose_weight", "Lose weight"),
            ("build_muscle", "Build muscle"),
            ("endurance", "Endurance"),
            ("general_fitness", "Stay fit"),
        ),
    ),
    QuestionSpec(
        step=WorkoutStep.ASK_EXPERIENCE.value,
        key="experience",
        prompt="💪 How experienced are you with training?",
        choices=(
            ("beginner", "Beginner"),
            ("intermediate", "Intermediate"),
            ("advanced", "Advanced"),
        ),
    ),
    QuestionSpec(
        step=WorkoutStep.ASK_LOCATION.value,
        key="location",
        prompt="📍 Where will you train?",
        choices=(
            ("home", "At home"),
            ("gym", "In a gym"),
            ("outdoor", "Outdoors"),
        ),
    ),
    QuestionSpec(
        step=WorkoutStep.ASK_DAYS.value,
        key="days_per_week",
        prompt="📅 How many days per week can you train? Send a number from 2 to 6.",
        parser=_days_per_week,
    ),
    QuestionSpec(
        step=WorkoutStep.ASK_DURATION.value,
        key="session_minutes",
        prompt="⏱ How long can one session be? Send minutes (20 to 120).",
        parser=_session_minutes,
    ),
]


NUTRITION_QUESTIONS: List[QuestionSpec] = [
    QuestionSpec(
        step=NutritionStep.ASK_GOAL.value,
        key="goal",
        prompt="🎯 What do you want from your meal plan?",
        choices=(
            ("lose_weight", "Lose weight"),
            ("maintain_weight", "Maintain weight"),
            ("gain_mass", "Gain mass"),
        ),
    ),
    QuestionSpec(
        step=NutritionStep.ASK_ACTIVITY.value,
        key="activity",
        prompt="🏃 How active are you during a typical day?",
        choices=(
            ("sedentary", "Mostly sitting"),
            ("light", "Light activity"),
            ("moderate", "Moderate activity"),
            ("high", "Very active"),
        ),
    ),
    QuestionSpec(
        step=NutritionStep.ASK_MEALS.value,
        key="meals_per_day",
        prompt="🍽 How many meals per day suit you? Send a number from 3 to 6.",
        parser=_meals_per_day,
    ),
    QuestionSpec(
        step=NutritionStep.ASK_RESTRICTIONS.value,
        key="restrictions",
        prompt="🥗 Any dietary restrictions?",
        choices=(
            ("none", "No restrictions"),
            ("vegetarian", "Vegetarian"),
            ("vegan", "Vegan"),
            ("lactose_free", "Lactose free"),
            ("gluten_free", "Gluten free"),
        ),
    ),
]


def _questionnaire_table(questions: List[QuestionSpec], generating: str) -> Dict[str, StepSpec]:
    """
    Builds a linear transition table: confirm_reuse branches into the first
    question or straight to generation; each question leads to the next;
    the last one leads to generation. Generation may roll back to the last
    question when synthesis fails.
    """
    first = questions[0].step
    table: Dict[str, StepSpec] = {
        "confirm_reuse": StepSpec(
            expects=InputKind.CALLBACK,
            choices=("yes", "no", "restart"),
            next_step=first,
            also_allowed=(generating,),
        ),
    }
    for index, question in enumerate(questions):
        is_last = index == len(questions) - 1
        table[question.step] = StepSpec(
            expects=InputKind.CALLBACK if question.is_choice else InputKind.TEXT,
            field=question.key,
            parser=question.parser,
            choices=tuple(value for value, _ in question.choices),
            next_step=generating if is_last else questions[index + 1].step,
        )
    table[generating] = StepSpec(
        expects=InputKind.NONE,
        next_step=None,
        also_allowed=(questions[-1].step,),
    )
    return table


WORKOUT_PLAN_FLOW = _questionnaire_table(WORKOUT_QUESTIONS, WorkoutStep.GENERATING.value)
NUTRITION_PLAN_FLOW = _questionnaire_table(NUTRITION_QUESTIONS, NutritionStep.GENERATING.value)


PROFILE_EDIT_FLOW: Dict[str, StepSpec] = {
    ProfileEditStep.AWAIT_VALUE.value: StepSpec(expects=InputKind.TEXT, next_step=None),
}

# Editable profile fields: field -> (store key, parser)
EDITABLE_FIELDS: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "name": ("first_name", parse_name),
    "age": ("age", parse_age),
    "height": ("height_cm", parse_height),
    "weight": ("weight_kg", parse_weight),
}

# Changing one of these recomputes the daily norms
NORM_FIELDS = ("age", "height", "weight")


def _capture_table(parser: Callable[[str], Any], field_name: str) -> Dict[str, StepSpec]:
    return {
        CaptureStep.AWAIT_TEXT.value: StepSpec(
            expects=InputKind.TEXT, field=field_name, parser=parser, next_step=None,
        ),
    }


def _free_text(text: str) -> str:
    return sanitize_input(text, max_length=2000)


FLOW_TABLES: Dict[FlowKind, Dict[str, StepSpec]] = {
    FlowKind.REGISTRATION: REGISTRATION_FLOW,
    FlowKind.MANUAL_ADD: MANUAL_ADD_FLOW,
    FlowKind.WORKOUT_PLAN: WORKOUT_PLAN_FLOW,
    FlowKind.NUTRITION_PLAN: NUTRITION_PLAN_FLOW,
    FlowKind.WATER_WAIT: _capture_table(parse_water_ml, "amount_ml"),
    FlowKind.STEPS_WAIT: _capture_table(parse_steps, "steps"),
    FlowKind.PROFILE_EDIT: PROFILE_EDIT_FLOW,
    FlowKind.QUESTION_WAIT: _capture_table(_free_text, "question"),
    FlowKind.MEDICAL_WAIT: _capture_table(_free_text, "text"),
}

QUESTIONNAIRES: Dict[FlowKind, List[QuestionSpec]] = {
    FlowKind.WORKOUT_PLAN: WORKOUT_QUESTIONS,
    FlowKind.NUTRITION_PLAN: NUTRITION_QUESTIONS,
}


def get_step_spec(flow: FlowKind, step: str) -> StepSpec:
    """
    Looks up a step in a flow's table.

    Raises:
        InternalInconsistencyError: If the step is not part of the flow
    """
    spec = FLOW_TABLES[flow].get(step)
    if spec is None:
        raise InternalInconsistencyError(
            flow=flow.value, message=f"Unknown step {step!r} for flow {flow.value}"
        )
    return spec


def initial_step(flow: FlowKind) -> str:
    return next(iter(FLOW_TABLES[flow]))


def accepts_text(flow: FlowKind, step: str) -> bool:
    spec = FLOW_TABLES[flow].get(step)
    return spec is not None and spec.expects == InputKind.TEXT


def is_valid_transition(flow: FlowKind, from_step: str, to_step: Optional[str]) -> bool:
    """
    Checks if a step transition is legal for the flow.

    Staying on the same step (re-prompt) is always legal. `to_step` of None
    means the flow finished, which is legal only from a terminal step.
    """
    spec = FLOW_TABLES[flow].get(from_step)
    if spec is None:
        return False
    if to_step == from_step:
        return True
    return to_step == spec.next_step or to_step in spec.also_allowed


def question_index(flow: FlowKind, step: str) -> Optional[int]:
    for index, question in enumerate(QUESTIONNAIRES.get(flow, [])):
        if question.step == step:
            return index
    return None
