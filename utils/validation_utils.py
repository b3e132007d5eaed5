"""
utils/validation_utils.py

Purpose: Input validation

- Range and shape checks for every typed dialogue answer
- Manual meal entry parsing ("Name, grams")
- Input sanitization

Every parser returns the normalized value or raises ValidationError whose
message is shown to the user as the re-prompt.
"""

import re
from typing import Tuple

from app.core.exceptions import ValidationError


NAME_MAX_LENGTH = 64

AGE_RANGE = (10, 100)
HEIGHT_RANGE = (100, 250)
WEIGHT_RANGE = (20.0, 300.0)
WATER_RANGE = (1, 5000)
STEPS_RANGE = (0, 100000)
MEAL_GRAMS_RANGE = (1, 5000)


def sanitize_input(text: str, max_length: int = 1000) -> str:
    """
    Sanitizes user input before it is stored or forwarded to the
    completion service.

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    text = text[:max_length]

    # Strip markup characters that would break Markdown replies
    text = re.sub(r"[<>{}\[\]]", "", text)

    # Normalize whitespace
    text = " ".join(text.split())

    return text.strip()


def _parse_number(text: str) -> float:
    cleaned = (text or "").strip().replace(",", ".").replace(" ", "")
    if not re.fullmatch(r"[0-9]+(\.[0-9]+)?", cleaned):
        raise ValueError(cleaned)
    return float(cleaned)


def parse_int_in_range(text: str, low: int, high: int, message: str) -> int:
    """
    Parses a whole number and checks it against an inclusive range.

    Spaces are allowed as thousands separators ("10 000").
    """
    cleaned = (text or "").strip().replace(" ", "")
    if not re.fullmatch(r"[0-9]+", cleaned):
        raise ValidationError(message, details={"value": text})
    value = int(cleaned)
    if value < low or value > high:
        raise ValidationError(message, details={"value": value, "range": [low, high]})
    return value


def parse_name(text: str) -> str:
    name = sanitize_input(text, max_length=NAME_MAX_LENGTH * 2)
    if not name or name.startswith("/") or len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"Please send your name as plain text (up to {NAME_MAX_LENGTH} characters).",
            details={"value": text}
        )
    return name


def parse_age(text: str) -> int:
    low, high = AGE_RANGE
    return parse_int_in_range(
        text, low, high, f"Please enter a valid age between {low} and {high}."
    )


def parse_height(text: str) -> int:
    low, high = HEIGHT_RANGE
    return parse_int_in_range(
        text, low, high, f"Please enter a valid height in cm ({low} to {high})."
    )


def parse_weight(text: str) -> float:
    """Weight in kg; a decimal comma is accepted (74,5)."""
    low, high = WEIGHT_RANGE
    message = f"Please enter a valid weight in kg (more than {low:g}, at most {high:g})."
    try:
        value = _parse_number(text)
    except ValueError:
        raise ValidationError(message, details={"value": text})
    if value <= low or value > high:
        raise ValidationError(message, details={"value": value})
    return round(value, 1)


def parse_water_ml(text: str) -> int:
    low, high = WATER_RANGE
    return parse_int_in_range(
        text, low, high, f"Please send the amount of water in ml ({low} to {high})."
    )


def parse_steps(text: str) -> int:
    low, high = STEPS_RANGE
    return parse_int_in_range(
        text, low, high, f"Please send your step count as a number ({low} to {high})."
    )


def parse_manual_meal(text: str) -> Tuple[str, int]:
    """
    Parses "Name, grams", e.g. "Buckwheat with chicken, 250".

    The last comma separates the amount, so dish names may contain commas.
    A trailing "g" or "gr" unit is tolerated.
    """
    message = "Please use the format: dish name, weight in grams (for example: Oatmeal, 250)."
    if not text or "," not in text:
        raise ValidationError(message, details={"value": text})

    name_part, _, grams_part = text.rpartition(",")
    name = sanitize_input(name_part, max_length=200)
    grams_part = re.sub(r"\s*(g|gr|grams)\.?$", "", grams_part.strip(), flags=re.IGNORECASE)

    if not name:
        raise ValidationError(message, details={"value": text})

    low, high = MEAL_GRAMS_RANGE
    grams = parse_int_in_range(
        grams_part, low, high, f"The weight must be a whole number of grams ({low} to {high})."
    )
    return name, grams
