"""
Planner Agent - LLM slot extraction and plan drafting.

One call per turn. The model is forced to answer through the
`respond_with_structure` tool so the reply is always a typed payload:
a conversational message, the slots it extracted, whether it believes it has
enough to plan, and (when ready) a candidate plan.

The engine treats this output as untrusted: readiness claims are re-checked
by the state machine and malformed plans are rejected. Readiness before the
mode minimum of questions is overridden here.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import openai

from planner.config import config
from planner.errors import ExtractorFailure
from planner.models import ExtractorResult, Mode

logger = logging.getLogger("planner.agent")

RESPONSE_TOOL = {
    "type": "function",
    "function": {
        "name": "respond_with_structure",
        "description": "Reply to the user and report what has been gathered so far.",
        "parameters": {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Conversational reply shown to the user"},
                "extractedInfo": {
                    "type": "object",
                    "description": "Facts gathered so far (date, location, budget, guests, ...)",
                    "additionalProperties": True,
                },
                "readyToGenerate": {"type": "boolean"},
                "questionCount": {"type": "integer", "description": "Clarifying questions asked so far"},
                "domain": {"type": "string"},
                "plan": {
                    "type": "object",
                    "properties": {
                        "title": {"type": "string"},
                        "description": {"type": "string"},
                        "tasks": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "title": {"type": "string"},
                                    "description": {"type": "string"},
                                    "category": {"type": "string"},
                                    "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                                    "timeEstimate": {"type": "string"},
                                    "scheduledDate": {"type": "string", "description": "YYYY-MM-DD"},
                                    "startTime": {"type": "string", "description": "HH:MM, 24h"},
                                },
                                "required": ["title"],
                            },
                        },
                        "budget": {
                            "type": "object",
                            "properties": {
                                "total": {"type": "number"},
                                "breakdown": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "properties": {
                                            "category": {"type": "string"},
                                            "amount": {"type": "number"},
                                            "notes": {"type": "string"},
                                        },
                                    },
                                },
                                "buffer": {"type": "number"},
                            },
                        },
                        "tips": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["title", "tasks"],
                },
            },
            "required": ["message", "extractedInfo", "readyToGenerate"],
        },
    },
}


def build_system_prompt(mode: Mode, context: Optional[Dict[str, Any]] = None) -> str:
    min_questions = config.max_questions(mode.value)
    context = context or {}
    gathered = json.dumps(context.get("extracted") or {}, default=str)

    if mode == Mode.SMART:
        style = (
            "SMART MODE: comprehensive planning. Ask deeper questions, offer options and "
            f"alternatives. Ask at least {min_questions} clarifying questions before planning."
        )
    else:
        style = (
            "QUICK MODE: keep it streamlined. Focus on essentials only and plan as soon as "
            f"the minimum is met. Ask at least {min_questions} clarifying questions before planning."
        )

    return f"""You are a friendly planning assistant helping the user turn an idea into an actionable plan.

{style}

Rules:
- Ask one or two questions per reply, never a questionnaire.
- Set readyToGenerate to true only once you have asked enough questions and can produce a complete plan.
- When readyToGenerate is true, include a plan with a title and concrete, ordered tasks.
- Dates are YYYY-MM-DD and times are 24h HH:MM. Money is in major units (e.g. 49.99).
- If the user asks for changes to a plan, return the full revised plan.
- Report questionCount: how many clarifying questions you have asked so far.

Already gathered: {gathered}
Questions asked so far: {context.get("question_count", 0)}
"""


def questions_asked(payload: Dict[str, Any], context: Optional[Dict[str, Any]]) -> int:
    """The session counter when the engine supplies one, else the model's own count."""
    if context and context.get("question_count") is not None:
        return int(context["question_count"])
    extracted = payload.get("extractedInfo") or {}
    reported = payload.get("questionCount") or extracted.get("questionCount") or 0
    try:
        return int(reported)
    except (TypeError, ValueError):
        return 0


def enforce_question_minimum(result: ExtractorResult, asked: int, mode: Mode) -> bool:
    """
    Withdraw a readiness claim made before the mode minimum of questions.

    Returns: True if the claim was withdrawn
    """
    min_questions = config.max_questions(mode.value)
    if not result.ready_to_generate or asked >= min_questions:
        return False
    missing = min_questions - asked
    result.ready_to_generate = False
    result.plan = None
    result.message += (
        f"\n\n_I need to gather {missing} more detail{'s' if missing > 1 else ''} before creating your plan._"
    )
    return True


class OpenAIPlannerAgent:
    """
    Slot extractor backed by the OpenAI chat completions API.

    Responsibilities:
    - Build the mode-specific system prompt
    - Force a structured tool response
    - Parse it into an ExtractorResult
    """

    def __init__(self, api_key: Optional[str] = None, model: str = config.LLM_MODEL,
                 temperature: float = config.LLM_TEMPERATURE):
        self.model = model
        self.temperature = temperature
        self.client = openai.OpenAI(api_key=api_key or config.OPENAI_API_KEY)
        self.calls = 0
        self.failures = 0

    async def _call_openai(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        response = await asyncio.to_thread(
            self.client.chat.completions.create,
            model=self.model,
            messages=messages,
            tools=[RESPONSE_TOOL],
            tool_choice={"type": "function", "function": {"name": "respond_with_structure"}},
            temperature=self.temperature,
        )
        tool_calls = response.choices[0].message.tool_calls or []
        if not tool_calls or not tool_calls[0].function.arguments:
            raise ValueError("No structured response from model")
        return json.loads(tool_calls[0].function.arguments)

    async def process(
        self,
        user_id: str,
        message: str,
        history: List[Dict[str, Any]],
        mode: Mode,
        context: Optional[Dict[str, Any]] = None,
    ) -> ExtractorResult:
        """
        Run one extraction turn.

        Args:
            user_id: Owner of the conversation (for logs only)
            message: The user's latest message
            history: Prior turns as {role, content} dicts
            mode: quick or smart
            context: Gathered slots and counters from the session

        Raises: ExtractorFailure if the model call or its payload fails
        """
        self.calls += 1
        messages = [{"role": "system", "content": build_system_prompt(mode, context)}]
        for turn in history:
            role = turn.get("role")
            if role in ("user", "assistant") and turn.get("content"):
                messages.append({"role": role, "content": turn["content"]})
        messages.append({"role": "user", "content": message})

        try:
            payload = await self._call_openai(messages)
        except Exception as e:
            self.failures += 1
            logger.error(f"Planner agent call failed for {user_id} ({type(e).__name__}): {e}")
            raise ExtractorFailure("The planning assistant could not process that message.") from e

        result = ExtractorResult.from_dict(payload)
        result.extracted_slots.pop("questionCount", None)
        asked = questions_asked(payload, context)
        if enforce_question_minimum(result, asked, mode):
            logger.info(f"Overriding readiness for {user_id}: only {asked} questions asked in {mode.value} mode")
        logger.debug(
            f"Agent reply for {user_id}: ready={result.ready_to_generate} "
            f"slots={list(result.extracted_slots)} tasks={len(result.plan.tasks) if result.plan else 0}"
        )
        return result
