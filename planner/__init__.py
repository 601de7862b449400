"""
Planner - Conversational Planning Engine

Philosophy: Ask before acting. Confirm before committing.

Planner turns a freeform planning conversation into one Activity and its
Tasks. The planner agent proposes, the user confirms, the materializer commits.
"""

__version__ = "1.0.0"
__entity__ = "Planner"
