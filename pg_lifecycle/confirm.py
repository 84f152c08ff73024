"""Confirmation capability used before any state-mutating step."""

import asyncio
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional


class BaseConfirmer(ABC):
    """Source of operator acknowledgments."""

    @abstractmethod
    async def ask(self, prompt: str) -> str:
        """Return the operator's free-form answer to ``prompt``."""

    async def confirm(self, prompt: str) -> bool:
        """Only an explicit "yes" counts as approval."""
        answer = await self.ask(f"{prompt} (yes/no): ")
        return answer.strip().lower() == "yes"


class PromptConfirmer(BaseConfirmer):
    """Interactive confirmer reading from the terminal."""

    async def ask(self, prompt: str) -> str:
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return ""


class AutoConfirmer(BaseConfirmer):
    """Non-interactive confirmer for CI and ``--yes`` runs.

    Answers every yes/no prompt with ``approve`` and every free-form
    question with ``default_answer``.
    """

    def __init__(self, approve: bool = True, default_answer: str = ""):
        self.approve = approve
        self.default_answer = default_answer
        self.prompts: List[str] = []

    async def ask(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.default_answer

    async def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.approve


class ScriptedConfirmer(BaseConfirmer):
    """Replays a fixed sequence of answers, then answers ``fallback``."""

    def __init__(self, answers: Iterable[str], fallback: Optional[str] = "no"):
        self._answers = list(answers)
        self.fallback = fallback
        self.prompts: List[str] = []

    async def ask(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._answers:
            return self._answers.pop(0)
        return self.fallback or ""
