"""
Planner Configuration - Environment-driven configuration management.
"""

import os
from dotenv import load_dotenv

load_dotenv()


class PlannerConfig:
    """Central configuration for the planning engine."""

    # Service identity
    SERVICE_NAME = "Planner"
    VERSION = "1.0.0"
    HOST = os.getenv("PLANNER_HOST", "0.0.0.0")
    PORT = int(os.getenv("PLANNER_PORT", 5020))
    APP_URL = os.getenv("APP_URL", "http://localhost:5173")

    # Redis (session store)
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
    REDIS_DB = int(os.getenv("REDIS_DB", 0))
    # 0 disables the idle policy: abandoned sessions stay live until superseded
    SESSION_IDLE_TIMEOUT_SECONDS = int(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS", 0))

    # PostgreSQL (activity/task store)
    POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", 5432))
    POSTGRES_DB = os.getenv("POSTGRES_DB", "planner")
    POSTGRES_USER = os.getenv("POSTGRES_USER", "planner")
    POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "")

    # NATS (plan events + reminders)
    NATS_URL = os.getenv("NATS_URL", "nats://localhost:4222")
    NATS_STREAM = os.getenv("NATS_STREAM", "PLANNER_EVENTS")

    # OpenAI (planner agent)
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
    LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", 0.7))

    # Langfuse
    LANGFUSE_HOST = os.getenv("LANGFUSE_HOST", "http://localhost:3000")
    LANGFUSE_PUBLIC_KEY = os.getenv("LANGFUSE_PUBLIC_KEY")
    LANGFUSE_SECRET_KEY = os.getenv("LANGFUSE_SECRET_KEY")

    # Conversation
    QUICK_MAX_QUESTIONS = int(os.getenv("QUICK_MAX_QUESTIONS", 3))
    SMART_MAX_QUESTIONS = int(os.getenv("SMART_MAX_QUESTIONS", 5))

    # Scheduling
    SCHEDULE_DAY_START = os.getenv("SCHEDULE_DAY_START", "09:00")
    SCHEDULE_DAY_END = os.getenv("SCHEDULE_DAY_END", "20:00")
    DEADLINE_BUFFER_HOURS = int(os.getenv("DEADLINE_BUFFER_HOURS", 2))

    # Processing
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    def max_questions(self, mode: str) -> int:
        return self.SMART_MAX_QUESTIONS if mode == "smart" else self.QUICK_MAX_QUESTIONS


config = PlannerConfig()
