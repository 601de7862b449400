"""
Planner Preview - User-facing text for plan previews and fixed replies.
"""

import logging
from typing import Optional

from planner.config import config
from planner.intent_classifier import already_asks_for_confirmation
from planner.models import Activity, CandidatePlan

logger = logging.getLogger("planner.preview")

CONFIRMATION_QUESTION = (
    "**Are you comfortable with this plan?** "
    "(Yes to proceed, or tell me what you'd like to add/change)"
)

APOLOGY_MESSAGE = (
    "Sorry, I had trouble putting that plan together. "
    "Could you tell me a bit more about what you have in mind so I can try again?"
)

HELP_MESSAGE = """🤖 **Here's how I can help you plan:**

**🧠 Smart Plan Mode:**
• Conversational & thorough planning
• Asks detailed clarifying questions (max 5)
• Perfect for complex activities (trips, events, work projects)
• Requires confirmation before creating your plan

**⚡ Quick Plan Mode:**
• Fast & direct suggestions
• Minimal questions (max 3 follow-ups)
• Great when you already know the details

**When to use each:**
• **Smart Plan**: When you want comprehensive planning with detailed conversation
• **Quick Plan**: When you need fast suggestions without extensive back-and-forth

Try saying "help me plan dinner" in either mode to see the difference! 😊"""

CATEGORY_EMOJI = {
    "travel": "✈️",
    "event": "🎉",
    "party": "🎉",
    "dining": "🍽️",
    "food": "🍽️",
    "fitness": "💪",
    "health": "🩺",
    "work": "💼",
    "learning": "📚",
    "education": "📚",
    "finance": "💰",
    "home": "🏠",
    "shopping": "🛍️",
}
DEFAULT_EMOJI = "📝"


def category_emoji(category: Optional[str]) -> str:
    return CATEGORY_EMOJI.get((category or "").lower(), DEFAULT_EMOJI)


def _format_money(amount) -> str:
    try:
        return f"${float(amount):,.2f}"
    except (TypeError, ValueError):
        return str(amount)


def format_plan_preview(plan: CandidatePlan) -> str:
    """Render a candidate plan as a markdown block."""
    lines = [f"**{plan.title}**"]
    if plan.description:
        lines.append(plan.description)
    lines.append("")
    for number, task in enumerate(plan.tasks, start=1):
        entry = f"{number}. {task.title}"
        if task.time_estimate:
            entry += f" ({task.time_estimate})"
        lines.append(entry)
    if plan.budget and plan.budget.total is not None:
        lines.append("")
        lines.append(f"💰 Budget: {_format_money(plan.budget.total)}")
    return "\n".join(lines)


def compose_confirmation(extractor_message: str, plan: CandidatePlan) -> str:
    """
    Agent message plus plan preview, with the confirmation question appended
    unless the agent already asked one. Falls back to the plain message if the
    plan cannot be rendered.
    """
    message = extractor_message or ""
    try:
        preview = format_plan_preview(plan)
        body = f"{message}\n\n{preview}" if message else preview
    except Exception as e:
        logger.warning(f"⚠️ Plan preview formatting failed, sending plain message: {e}")
        body = message
    if already_asks_for_confirmation(message):
        return body
    return f"{body}\n\n{CONFIRMATION_QUESTION}"


def replay_message(plan: CandidatePlan) -> str:
    """Stored plan preview shown again on request."""
    try:
        return f"Here's the plan again:\n\n{format_plan_preview(plan)}\n\n{CONFIRMATION_QUESTION}"
    except Exception as e:
        logger.warning(f"⚠️ Plan replay formatting failed: {e}")
        return CONFIRMATION_QUESTION


def success_message(activity: Activity, updated: bool = False) -> str:
    """Markdown link to the activity plus a ready/updated line."""
    url = f"{config.APP_URL}/app?activity={activity.id}&tab=Activities"
    link = f"[{category_emoji(activity.category)} {activity.title}]({url})"
    if updated:
        return f"{link}\n\n♻️ Your plan has been updated!"
    return f"{link}\n\n✨ Your plan is ready!"
