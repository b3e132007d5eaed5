"""
app/services/plan_service.py

Purpose: Prompt building for generated content

- Workout and nutrition plan prompts from questionnaire answers
- Open question and medical text prompts
- Markdown document for delivering a plan
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.flow.states import FlowKind, QUESTIONNAIRES, QuestionSpec

PLAN_MAX_TOKENS = 2500
ANSWER_MAX_TOKENS = 800
MEDICAL_MAX_TOKENS = 1200

WORKOUT_SYSTEM_PROMPT = """You are a certified personal trainer. Write a safe, structured weekly workout plan in Markdown.
Use one "##" section per training day with exercises, sets, reps and rest. Add a short warm-up and cool-down.
Adapt volume to the person's experience and equipment. Do not add text outside the plan."""

NUTRITION_SYSTEM_PROMPT = """You are a registered dietitian. Write a one-day sample meal plan and general guidance in Markdown.
Use one "##" section per meal with dishes, portion sizes in grams and approximate calories and macros.
Respect dietary restrictions strictly and keep the daily total close to the calorie target. Do not add text outside the plan."""

QUESTION_SYSTEM_PROMPT = """You are NutriPal, a friendly nutrition and fitness assistant in a Telegram chat.
Answer briefly and practically (at most 8 short paragraphs). Use simple Markdown.
If the question needs a doctor, say so."""

MEDICAL_SYSTEM_PROMPT = """You are a careful medical assistant explaining lab results to a layperson.
For each value you recognize, say whether it looks within a typical range and what it usually means.
Never diagnose. Recommend discussing any abnormal values with a doctor. Use simple Markdown."""


def _profile_lines(profile: Optional[Dict[str, Any]]) -> List[str]:
    if not profile:
        return []
    return [
        f"- Gender: {profile.get('gender', 'unknown')}",
        f"- Age: {profile.get('age', 'unknown')}",
        f"- Height: {profile.get('height_cm', 'unknown')} cm",
        f"- Weight: {profile.get('weight_kg', 'unknown')} kg",
        f"- Daily calorie target: {profile.get('daily_calories', 'unknown')} kcal",
    ]


def _answer_lines(questions: List[QuestionSpec], answers: Dict[str, Any]) -> List[str]:
    lines = []
    for question in questions:
        if question.key in answers:
            value = answers[question.key]
            label = question.label_for(value) if question.is_choice else value
            lines.append(f"- {question.key.replace('_', ' ').capitalize()}: {label}")
    return lines


def plan_prompts(flow: FlowKind, answers: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> Tuple[str, str]:
    """
    Returns (system_prompt, user_prompt) for a plan flow.

    Raises:
        KeyError: If the flow has no questionnaire
    """
    questions = QUESTIONNAIRES[flow]
    system = WORKOUT_SYSTEM_PROMPT if flow == FlowKind.WORKOUT_PLAN else NUTRITION_SYSTEM_PROMPT
    kind = "workout" if flow == FlowKind.WORKOUT_PLAN else "nutrition"
    lines = [f"Create a personal {kind} plan.", "", "About me:"]
    lines += _profile_lines(profile) or ["- (no profile data)"]
    lines += ["", "My answers:"]
    lines += _answer_lines(questions, answers)
    return system, "\n".join(lines)


def render_plan_document(flow: FlowKind, body: str, answers: Dict[str, Any]) -> Tuple[str, bytes]:
    """
    Wraps the generated plan in a Markdown document.

    Returns:
        (filename, content bytes)
    """
    title = "Workout plan" if flow == FlowKind.WORKOUT_PLAN else "Nutrition plan"
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    parts = [
        f"# {title}",
        "",
        f"_Generated by NutriPal on {generated}_",
        "",
        "## Your answers",
        *_answer_lines(QUESTIONNAIRES[flow], answers),
        "",
        body.strip(),
        "",
    ]
    filename = f"{flow.value}_{generated}.md"
    return filename, "\n".join(parts).encode("utf-8")
