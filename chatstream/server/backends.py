"""
MODULE OVERVIEW:
The LLM side of a chat turn, behind a small interface.

WHAT IS HAPPENING HERE:
The streaming engine does not care how answers are produced. A backend
receives the user message plus three async callbacks (progress steps,
answer tokens, tool results) and returns the final result dict.
`ScriptedChatBackend` is the demo implementation: it fakes a model that
thinks, streams its answer word by word, and proposes to remember a fact
whenever the user says "remember". It gives the server realistic,
predictable traffic without any API key.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List
from uuid import uuid4

from chatstream.shared.config import settings
from chatstream.shared.models import MEMORY_PROPOSAL_ACTION, MEMORY_PROPOSAL_TOOL, CostEstimate

StatusCallback = Callable[[str, str], Awaitable[None]]
TokenCallback = Callable[[str], Awaitable[None]]
ToolCallback = Callable[[str, Any], Awaitable[None]]


class ChatBackend(ABC):
    @abstractmethod
    async def ask(
        self,
        message: str,
        options: Dict[str, Any],
        on_status: StatusCallback | None = None,
        on_token: TokenCallback | None = None,
        on_tool_executed: ToolCallback | None = None,
    ) -> Dict[str, Any]:
        """Runs one turn. Returns at least {answer, usage, model}."""

    async def reset(self) -> None:
        """Forgets any stateful session history."""


class ScriptedChatBackend(ChatBackend):
    model_name = "scripted-demo"

    OPENERS = [
        "Good question.",
        "Here is what I found.",
        "Let me break that down.",
    ]

    def __init__(self, token_delay_s: float = settings.DEMO_TOKEN_DELAY_S):
        self.token_delay_s = token_delay_s
        self.history: List[Dict[str, str]] = []

    async def ask(self, message, options, on_status=None, on_token=None, on_tool_executed=None):
        if options.get("stateless"):
            # Title generation and other side calls: no streaming, no history.
            return self._result(self._title_for(message), prompt=message)

        if on_status:
            await on_status("Analysing the request", "analysis")
        await asyncio.sleep(self.token_delay_s)

        if "remember" in message.lower() and on_tool_executed:
            fact = message.split("remember", 1)[1].strip(" :,.") or message
            await on_tool_executed(MEMORY_PROPOSAL_TOOL, {
                "__action": MEMORY_PROPOSAL_ACTION,
                "fact": fact,
                "category": "preference",
            })

        if on_status:
            await on_status("Writing the answer", "generation")

        answer = self._compose(message, options)
        words = answer.split(" ")
        for i, word in enumerate(words):
            if on_token:
                await on_token(word if i == 0 else f" {word}")
            await asyncio.sleep(self.token_delay_s)

        self.history.append({"role": "user", "content": message})
        self.history.append({"role": "model", "content": answer})
        return self._result(answer, prompt=message)

    async def reset(self) -> None:
        self.history.clear()

    def _compose(self, message: str, options: Dict[str, Any]) -> str:
        persona = options.get("persona")
        opener = random.choice(self.OPENERS)
        lines = [f"{opener} You said: **{message}**."]
        if persona:
            lines.append(f"_Answering as {persona}._")
        lines.append(f"This conversation has {len(options.get('history', []))} earlier messages.")
        return "\n\n".join(lines)

    def _title_for(self, prompt: str) -> str:
        subject = prompt.split(":", 1)[-1].strip(" '\"")
        return " ".join(subject.split()[:6]) or "New conversation"

    def _result(self, answer: str, prompt: str) -> Dict[str, Any]:
        return {
            "answer": answer,
            "model": self.model_name,
            "debug_id": uuid4().hex[:8],
            "usage": {
                "prompt_tokens": estimate_tokens(prompt),
                "completion_tokens": estimate_tokens(answer),
                "thinking_tokens": 0,
            },
        }


def estimate_tokens(text: str) -> int:
    # Roughly four characters per token for latin text.
    return max(1, len(text) // 4) if text else 0


class CostEstimator:
    """Prices a prospective request before it is sent."""

    def __init__(self, input_price_per_1k: float = 0.0005, output_price_per_1k: float = 0.0015,
                 expected_output_tokens: int = 2048, currency: str = "USD"):
        self.input_price_per_1k = input_price_per_1k
        self.output_price_per_1k = output_price_per_1k
        self.expected_output_tokens = expected_output_tokens
        self.currency = currency

    def estimate_cost(self, contents: List[Dict[str, str]]) -> CostEstimate:
        if not contents:
            return CostEstimate(estimated_output_tokens=self.expected_output_tokens, currency=self.currency)
        prompt_tokens = sum(estimate_tokens(c.get("content", "")) for c in contents)
        cost = (
            prompt_tokens * self.input_price_per_1k
            + self.expected_output_tokens * self.output_price_per_1k
        ) / 1000
        return CostEstimate(
            prompt_tokens=prompt_tokens,
            estimated_output_tokens=self.expected_output_tokens,
            cost_model_currency=round(cost, 6),
            cost_reference=round(cost, 6),
            currency=self.currency,
        )
