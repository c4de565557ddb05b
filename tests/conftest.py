"""Shared test fixtures and helpers."""

import json
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Union

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from sales_agent.conversation.guardrails import GuardrailPipeline
from sales_agent.conversation.state_machine import ProcessingStateMachine
from sales_agent.llm.client import ModelReply
from sales_agent.schemas.conversation_schema import ChatMessage, ModelTier, Role, ToolCall
from sales_agent.schemas.turn_schema import TurnContext
from sales_agent.storage.database import create_session_factory, init_models
from sales_agent.storage.session_store import SessionStore
from sales_agent.tools import names
from sales_agent.tools.provider import ToolOutput, ToolSpec

SESSION_ID = "session-5583999990000"
PHONE = "5583999990000"


# ------------------------------------------------------------------ #
#  Test doubles
# ------------------------------------------------------------------ #


class FrozenClock:
    """Controllable naive-UTC clock for the session store."""

    def __init__(self, start: datetime = datetime(2025, 2, 13, 12, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


Scripted = Union[ModelReply, Exception]


class ScriptedLLM:
    """
    Language model double.

    ``replies`` feed ``complete`` in order; ``streams`` feed ``stream``.
    When ``replies`` runs out, ``default`` (if given) produces the reply.
    """

    def __init__(
        self,
        replies: Optional[list[Scripted]] = None,
        streams: Optional[list[Union[str, Exception]]] = None,
        default: Optional[Callable[[], ModelReply]] = None,
    ) -> None:
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.default = default
        self.complete_calls: list[dict[str, Any]] = []
        self.stream_calls: list[list[dict[str, Any]]] = []

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tier: ModelTier = ModelTier.BASELINE,
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ModelReply:
        self.complete_calls.append({
            "messages": list(messages),
            "tier": tier,
            "tools": tools,
            "tool_choice": tool_choice,
            "temperature": temperature,
        })
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default()
        else:
            reply = ModelReply(content="")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tier: ModelTier = ModelTier.BASELINE,
        temperature: Optional[float] = None,
    ):
        self.stream_calls.append(list(messages))
        text = self.streams.pop(0) if self.streams else ""
        if isinstance(text, Exception):
            raise text
        for index in range(0, len(text), 40):
            yield text[index:index + 40]


ToolAnswer = Union[str, ToolOutput, Exception, Callable[[dict[str, Any]], Any]]


class FakeToolProvider:
    """Tool server double recording every call."""

    def __init__(
        self,
        results: Optional[dict[str, ToolAnswer]] = None,
        prompts: Optional[dict[str, str]] = None,
        list_error: Optional[Exception] = None,
    ) -> None:
        self.results = results or {}
        self.prompts = prompts or {}
        self.list_error = list_error
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.prompt_requests: list[str] = []

    def called(self, name: str) -> list[dict[str, Any]]:
        return [args for tool, args in self.calls if tool == name]

    async def list_tools(self) -> list[ToolSpec]:
        if self.list_error is not None:
            raise self.list_error
        return [
            ToolSpec(name=value, description=f"{value} tool")
            for key, value in vars(names).items()
            if key.isupper()
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]):
        self.calls.append((name, dict(arguments)))
        answer = self.results.get(name, '{"status": "ok"}')
        if callable(answer) and not isinstance(answer, (str, ToolOutput)):
            answer = answer(arguments)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def get_prompt(self, name: str) -> str:
        self.prompt_requests.append(name)
        return self.prompts.get(name, f"Diretriz: {name}")


# ------------------------------------------------------------------ #
#  Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture
def state_machine():
    return ProcessingStateMachine()


@pytest.fixture
def guardrail_pipeline():
    return GuardrailPipeline()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(engine, clock):
    return SessionStore(create_session_factory(engine), clock=clock)


# ------------------------------------------------------------------ #
#  Helpers
# ------------------------------------------------------------------ #


def make_message(role: Role, content: str = "", **kwargs: Any) -> ChatMessage:
    """Helper to create a ChatMessage."""
    return ChatMessage(role=role, content=content, **kwargs)


def make_tool_call(name: str, arguments: Optional[dict[str, Any]] = None, call_id: str = "call_1") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=json.dumps(arguments or {}, ensure_ascii=False))


def make_tool_exchange(
    name: str,
    output: str,
    arguments: Optional[dict[str, Any]] = None,
    call_id: str = "call_1",
) -> list[ChatMessage]:
    """An assistant tool request followed by its tool result."""
    return [
        make_message(Role.ASSISTANT, tool_calls=[make_tool_call(name, arguments, call_id)]),
        make_message(Role.TOOL, output, tool_call_id=call_id, name=name),
    ]


def make_product(product_id: str, name: str, price: float, kind: str = "EXATO") -> dict[str, Any]:
    return {
        "id": product_id,
        "nome": name,
        "preco": price,
        "tipo_resultado": kind,
        "tempo_producao": "2 horas",
    }


def make_catalog_payload(*products: dict[str, Any]) -> str:
    exact = [p for p in products if p.get("tipo_resultado", "EXATO") == "EXATO"]
    fallback = [p for p in products if p.get("tipo_resultado") == "FALLBACK"]
    return json.dumps({"status": "found", "exatos": exact, "fallback": fallback}, ensure_ascii=False)


def make_turn_context(**overrides: Any) -> TurnContext:
    """TurnContext with sensible defaults for validator and loop tests."""
    values: dict[str, Any] = {
        "session_id": SESSION_ID,
        "user_message": "",
        "today": date(2025, 2, 13),
        "customer_phone": PHONE,
        "customer_name": "Maria",
    }
    values.update(overrides)
    return TurnContext(**values)


def make_order_summary() -> str:
    """An assistant message presenting a complete order and asking to confirm."""
    return (
        "Resumo do seu pedido:\n"
        "🧺 Cesta Romântica - R$ 150,00\n"
        "📅 Entrega: 14/02 às 15:00\n"
        "📍 Endereço: Rua das Flores, 123, Centro, Campina Grande\n"
        "💳 Pagamento: PIX\n"
        "Está tudo certo?"
    )
