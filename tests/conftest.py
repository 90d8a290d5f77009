from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, List, Optional, Union

import httpx
import openai
import pytest

from conceptcraft.llm import GenerationGateway
from conceptcraft.storage import ConceptStore, InMemoryStore


def connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions"))


Reply = Union[str, Exception]


class FakeCompletions:
    """Stand-in for ``client.chat.completions`` that replays queued replies.

    Once the queue is empty every call fails with a connection error. When a
    ``gate`` is set, each call waits on it before answering.
    """

    def __init__(self, replies: List[Reply], gate: Optional[asyncio.Event] = None) -> None:
        self.replies = list(replies)
        self.calls: List[dict[str, Any]] = []
        self.gate = gate

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else connection_error()
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


class FakeClient:
    def __init__(self, replies: Optional[List[Reply]] = None, gate: Optional[asyncio.Event] = None) -> None:
        self.completions = FakeCompletions(replies or [], gate)
        self.chat = SimpleNamespace(completions=self.completions)


def as_json(**payload: Any) -> str:
    return json.dumps(payload)


@pytest.fixture
def kv() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def store(kv: InMemoryStore) -> ConceptStore:
    concepts = ConceptStore(kv)
    concepts.create_new_concept("user-1")
    return concepts


@pytest.fixture
def offline_gateway() -> GenerationGateway:
    """Gateway without a client: every generation returns its fallback."""

    return GenerationGateway(None)


@pytest.fixture
def committed_store(store: ConceptStore) -> ConceptStore:
    store.update_concept(
        problem_statement="Freelancers lose track of unpaid invoices.",
        solution_statement="An inbox that chases overdue invoices automatically.",
    )
    return store
