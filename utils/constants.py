"""
utils/constants.py

Purpose: Centralized static content

- All user-facing messages
- Main menu and inline button labels
- Quick-add amounts and other small constants

(Prevents hardcoding across the codebase)
"""

# ============================================================
# WELCOME & ONBOARDING
# ============================================================

WELCOME_NEW_USER_MESSAGE = """👋 *Welcome to NutriPal!*

I'm your personal nutrition and health assistant. I can:
📸 Count calories from a photo of your meal
✍️ Log meals you type in
💧 Track water and 👣 steps
🏋️ Build workout and 🥗 nutrition plans

Let's set up your profile first. It takes a minute.

What's your name?"""

WELCOME_BACK_MESSAGE = """👋 Welcome back, {name}!

Choose what you'd like to do from the menu below."""

HELP_MESSAGE = """ℹ️ *How to use NutriPal*

📸 *Photo* - send a picture of your meal and I'll estimate calories
✍️ *Manual* - type a dish and its weight, e.g. `Oatmeal, 250`
💧 *Water* / 👣 *Steps* - log your daily activity
📊 *Statistics* - see today, this week or this month
🏋️ / 🥗 *Plans* - answer a few questions and get a personal plan
🎤 You can also send voice messages

Commands:
/start - restart from the main menu
/cancel - stop the current action
/menu - show the menu
/help - show this message"""

MENU_PROMPT = "📋 Choose an action from the menu below."

FALLBACK_MESSAGE = """🤔 I'm not sure what to do with that.

Use the menu below, send a meal photo, or tap ❓ *Ask a question* to ask me anything."""

CANCELLED_MESSAGE = "✅ Cancelled. Back to the main menu."

# ============================================================
# REGISTRATION
# ============================================================

ASK_NAME_MESSAGE = "What's your name?"
ASK_GENDER_MESSAGE = "Nice to meet you, {name}! 😊\n\nWhat's your gender?"
ASK_AGE_MESSAGE = "How old are you? (full years)"
ASK_HEIGHT_MESSAGE = "What's your height in cm?"
ASK_WEIGHT_MESSAGE = "What's your current weight in kg? (e.g. 74.5)"
ASK_GOAL_MESSAGE = "🎯 What's your goal?"
USE_BUTTONS_MESSAGE = "👆 Please choose one of the options using the buttons above."

REGISTRATION_COMPLETE_MESSAGE = """🎉 *Your profile is ready!*

Your daily norms:
🔥 Calories: *{daily_calories}* kcal
🥩 Protein: *{daily_protein}* g
🧈 Fat: *{daily_fat}* g
🍞 Carbs: *{daily_carbs}* g
💧 Water: *{daily_water_ml}* ml

Send me a photo of your next meal to start tracking!"""

ALREADY_REGISTERED_MESSAGE = "✅ You're already registered, {name}. Here's the menu."

# ============================================================
# MEALS
# ============================================================

PHOTO_PROMPT_MESSAGE = "📸 Send me a photo of your meal and I'll estimate its nutrition."
MANUAL_PROMPT_MESSAGE = """✍️ Type the dish and its weight in grams, separated by a comma.

Example: `Buckwheat with chicken, 250`"""
ANALYZING_MESSAGE = "🔍 Analyzing your meal..."
NOT_FOOD_MESSAGE = "🤷 I couldn't find any food in that. Please try another photo or description."
MEAL_CARD_MESSAGE = """🍽 {dish_name}
⚖️ Weight: ~{weight_g} g

🔥 Calories: *{calories}* kcal
🥩 Protein: {protein} g
🧈 Fat: {fat} g
🍞 Carbs: {carbs} g

Save this meal?"""
MEAL_SAVED_MESSAGE = "✅ {dish_name} saved ({calories} kcal)."
MEAL_CANCELLED_MESSAGE = "❌ Action cancelled."
CONFIRMATION_EXPIRED_MESSAGE = "⌛ This choice has expired. Please add the meal again."
CONFIRM_PENDING_MESSAGE = "👆 Please confirm or cancel the meal above using the buttons."

# ============================================================
# WATER & STEPS
# ============================================================

WATER_MENU_MESSAGE = "💧 How much water did you drink?"
WATER_CUSTOM_PROMPT = "💧 Send the amount in ml (for example: 250)."
WATER_ADDED_MESSAGE = "💧 +{amount_ml} ml recorded. Today: *{total_ml}* / {norm_ml} ml"
STEPS_PROMPT = "👣 Send today's step count (for example: 8500)."
STEPS_SAVED_MESSAGE = "👣 *{steps}* steps saved for today. Keep moving!"

# ============================================================
# PLANS
# ============================================================

PLAN_REUSE_MESSAGE = """📝 I already have your answers for the {plan_name}.

Regenerate the plan with the same answers?"""
PLAN_GENERATING_MESSAGE = "⏳ Building your {plan_name}. This can take up to a minute..."
PLAN_READY_CAPTION = "✅ Your {plan_name} is ready!"
PLAN_FAILED_MESSAGE = "😕 I couldn't build the plan right now. Please answer the last question again to retry."
PLAN_QUESTION_HANDOFF = "❓ Sure! Send me your question and I'll do my best to answer."
PLAN_ALREADY_ANSWERED = "This question was already answered. Please answer the current one."
PLAN_NAMES = {
    "workout_plan": "workout plan",
    "nutrition_plan": "nutrition plan",
}

# ============================================================
# PROFILE
# ============================================================

PROFILE_MESSAGE = """👤 *Your profile*

Name: {first_name}
Age: {age}
Height: {height_cm} cm
Weight: {weight_kg} kg
Goal: {goal_label}

🔥 {daily_calories} kcal | 🥩 {daily_protein} g | 🧈 {daily_fat} g | 🍞 {daily_carbs} g
💧 {daily_water_ml} ml

Tap a field to change it."""
PROFILE_EDIT_PROMPTS = {
    "name": "Send your new name.",
    "age": "Send your new age.",
    "height": "Send your new height in cm.",
    "weight": "Send your new weight in kg.",
}
PROFILE_UPDATED_MESSAGE = "✅ Profile updated."
PROFILE_NORMS_UPDATED_MESSAGE = "✅ Profile updated. New daily target: *{daily_calories}* kcal."
GOAL_LABELS = {
    "lose_weight": "Lose weight",
    "maintain_weight": "Maintain weight",
    "gain_mass": "Gain mass",
}

# ============================================================
# QUESTIONS & MEDICAL
# ============================================================

QUESTION_PROMPT = "❓ What would you like to ask? Send your question as text or voice."
MEDICAL_PROMPT = """🩺 Send the text of your lab results or medical report.

You can paste the text or send a .txt file. I'll explain it in plain language.
⚠️ This is not a diagnosis. Always consult your doctor."""
MEDICAL_TEXT_ONLY = "🩺 Please send the results as text or a .txt file."
MEDICAL_DISCLAIMER = "\n\n⚠️ This is not medical advice. Please discuss the results with your doctor."
MEDICAL_NOT_SAVED = "📝 The note was not saved. Send the text again to store it."

# ============================================================
# STATISTICS & REPORTS
# ============================================================

STATS_MENU_MESSAGE = "📊 Choose a period:"
STATS_TITLES = {
    "today": "📊 *Today*",
    "week": "📊 *Last 7 days*",
    "month": "📊 *Last 30 days*",
}
STATS_EMPTY_MESSAGE = "{title}\n\nNo meals logged for this period yet, {name}."
STATS_MESSAGE = """{title}

🔥 Calories: *{calories} / {target_calories}* kcal
{calories_bar}
{average}
🥩 Protein: {protein} / {target_protein} g
🧈 Fat: {fat} / {target_fat} g
🍞 Carbs: {carbs} / {target_carbs} g

🍽 Meals logged: {meal_count}"""
STATS_AVERAGE_LINE = "📈 Daily average: *{average}* kcal/day\n"
DAILY_REPORT_MESSAGE = """🌙 *Your day in numbers*

🔥 Calories: {calories} / {daily_calories} kcal
{calories_bar}
💧 Water: {water_ml} / {daily_water_ml} ml
👣 Steps: {steps}

See you tomorrow! 💪"""
CHALLENGE_ANNOUNCEMENT = """🏆 *Weekly challenge: {title}*

{description}

Goal: *{target_steps}* steps this week. Log your steps daily with 👣 *Steps*."""
CHALLENGE_REMINDER = """🏆 *{title}*

Progress: *{steps}* / {target_steps} steps
{bar}"""
CHALLENGE_NONE_MESSAGE = "🏆 There's no active challenge this week yet."

# ============================================================
# ERRORS
# ============================================================

MSG_GENERIC_ERROR = "😕 Something went wrong. Please try again."
MSG_STORE_UNAVAILABLE = "😕 I couldn't save or load your data right now. Please try again in a moment."
MSG_COMPLETION_UNAVAILABLE = "😕 The assistant is busy right now. Please try again in a moment."
MSG_TRANSCRIPTION_FAILED = "🎤 I couldn't understand the voice message. Please try again or type it."
MSG_PLEASE_REDO = "⌛ That step is no longer active. Please start again from the menu."
MSG_RETRY = "⚠️ Something didn't add up on my side. Please try again."
MSG_RATE_LIMITED = "🐢 You're sending messages too fast. Please wait {seconds} seconds."
MSG_UNSUPPORTED_BUTTON = "This button is no longer supported."
MSG_NOT_REGISTERED = "👋 Please complete your profile first. Send /start."

# ============================================================
# MENU BUTTONS
# ============================================================

BTN_PHOTO = "📸 Add by photo"
BTN_MANUAL = "✍️ Add manually"
BTN_STATS = "📊 Statistics"
BTN_WATER = "💧 Water"
BTN_STEPS = "👣 Steps"
BTN_WORKOUT = "🏋️ Workout plan"
BTN_NUTRITION = "🥗 Nutrition plan"
BTN_PROFILE = "👤 Profile"
BTN_QUESTION = "❓ Ask a question"
BTN_MEDICAL = "🩺 Lab results"

MAIN_MENU_ROWS = [
    [BTN_PHOTO, BTN_MANUAL],
    [BTN_STATS, BTN_WATER, BTN_STEPS],
    [BTN_WORKOUT, BTN_NUTRITION],
    [BTN_PROFILE, BTN_QUESTION, BTN_MEDICAL],
]

# Inline button labels
BTN_MALE = "👨 Male"
BTN_FEMALE = "👩 Female"
BTN_GOAL_LOSE = "📉 Lose weight"
BTN_GOAL_MAINTAIN = "⚖️ Maintain"
BTN_GOAL_GAIN = "📈 Gain mass"
BTN_CONFIRM = "✅ Save"
BTN_CANCEL = "❌ Cancel"
BTN_TODAY = "Today"
BTN_WEEK = "Week"
BTN_MONTH = "Month"
BTN_WATER_CUSTOM = "✏️ Other amount"
BTN_YES = "✅ Yes, regenerate"
BTN_NO = "❓ No, I have a question"
BTN_RESTART = "🔄 Answer again"
BTN_CHALLENGE_PROGRESS = "📈 My progress"

WATER_QUICK_AMOUNTS = (200, 300, 500)

# Weekly challenge rotation (by ISO week number)
WEEKLY_CHALLENGES = [
    {"title": "50K Steps Week", "description": "Walk a little more every day.", "target_steps": 50000},
    {"title": "Active Commute", "description": "Swap one ride a day for a walk.", "target_steps": 60000},
    {"title": "70K Marathon", "description": "Ten thousand steps, every day.", "target_steps": 70000},
    {"title": "Evening Walks", "description": "A 30-minute walk after dinner.", "target_steps": 55000},
]
