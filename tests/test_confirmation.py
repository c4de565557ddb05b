"""Tests for explicit order confirmation detection."""

import pytest

from sales_agent.conversation.confirmation import (
    is_affirmative,
    is_explicit_confirmation,
    is_order_summary,
    last_assistant_reply,
)
from sales_agent.schemas.conversation_schema import Role
from sales_agent.tools import names
from tests.conftest import make_message, make_order_summary, make_tool_exchange


def _after_summary(summary: str):
    return [
        make_message(Role.USER, "pode ser no pix"),
        make_message(Role.ASSISTANT, summary),
    ]


class TestOrderSummary:
    def test_complete_summary(self):
        assert is_order_summary(make_order_summary())

    def test_summary_without_payment_is_not_complete(self):
        summary = make_order_summary().replace("💳 Pagamento: PIX\n", "")
        assert not is_order_summary(summary)

    def test_summary_without_closing_question(self):
        summary = make_order_summary().replace("Está tudo certo?", "Obrigada!")
        assert not is_order_summary(summary)


class TestAffirmative:
    @pytest.mark.parametrize("text", [
        "sim", "Sim!", "pode confirmar", "isso mesmo", "ok",
        "Sim! Pode confirmar sim, está tudo certo 😊",
    ])
    def test_affirmative(self, text):
        assert is_affirmative(text)

    @pytest.mark.parametrize("text", [
        "sim, mas quero mudar a data",
        "não",
        "espera, ainda não",
        "",
        "quanto fica o frete para Queimadas?",
    ])
    def test_not_affirmative(self, text):
        assert not is_affirmative(text)


class TestExplicitConfirmation:
    def test_yes_after_summary(self):
        assert is_explicit_confirmation(_after_summary(make_order_summary()), "sim")

    def test_yes_without_summary(self):
        messages = [make_message(Role.USER, "oi"), make_message(Role.ASSISTANT, "Olá! Como posso ajudar?")]
        assert not is_explicit_confirmation(messages, "sim")

    def test_yes_after_incomplete_summary(self):
        summary = make_order_summary().replace("💳 Pagamento: PIX\n", "")
        assert not is_explicit_confirmation(_after_summary(summary), "sim")

    def test_hesitation_after_summary(self):
        assert not is_explicit_confirmation(_after_summary(make_order_summary()), "sim, mas troca o horário")

    def test_last_reply_skips_tool_requests(self):
        messages = [
            *_after_summary(make_order_summary()),
            *make_tool_exchange(names.FREIGHT, '{"frete": 0}'),
        ]
        assert last_assistant_reply(messages) == make_order_summary()

    def test_no_assistant_reply(self):
        assert last_assistant_reply([make_message(Role.USER, "oi")]) is None
