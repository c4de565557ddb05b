"""Tests for history cleaning and context windowing."""

from sales_agent.conversation.history import (
    drop_orphaned_tool_exchanges,
    recent_user_texts,
    window_history,
)
from sales_agent.schemas.conversation_schema import Role
from sales_agent.tools import names
from tests.conftest import make_message, make_tool_call, make_tool_exchange


def _conversation(turns: int):
    messages = []
    for index in range(turns):
        messages.append(make_message(Role.USER, f"mensagem {index}"))
        messages.append(make_message(Role.ASSISTANT, f"resposta {index}"))
    return messages


class TestDropOrphans:
    def test_complete_exchange_kept(self):
        messages = [make_message(Role.USER, "flores"), *make_tool_exchange(names.CATALOG_SEARCH, "{}")]
        assert drop_orphaned_tool_exchanges(messages) == messages

    def test_unanswered_tool_request_dropped(self):
        request = make_message(Role.ASSISTANT, tool_calls=[make_tool_call(names.CATALOG_SEARCH)])
        cleaned = drop_orphaned_tool_exchanges([make_message(Role.USER, "flores"), request])
        assert cleaned == [make_message(Role.USER, "flores")]

    def test_partially_answered_request_dropped_with_its_results(self):
        request = make_message(Role.ASSISTANT, tool_calls=[
            make_tool_call(names.CATALOG_SEARCH, call_id="a"),
            make_tool_call(names.ADD_ONS, call_id="b"),
        ])
        result = make_message(Role.TOOL, "{}", tool_call_id="a", name=names.CATALOG_SEARCH)
        assert drop_orphaned_tool_exchanges([request, result]) == []

    def test_tool_result_without_request_dropped(self):
        orphan = make_message(Role.TOOL, "{}", tool_call_id="ghost", name=names.FREIGHT)
        assert drop_orphaned_tool_exchanges([orphan, make_message(Role.USER, "oi")]) == [
            make_message(Role.USER, "oi")
        ]


class TestWindowHistory:
    def test_short_history_untouched(self):
        messages = _conversation(3)
        assert window_history(messages, max_user_messages=10) == messages

    def test_keeps_last_n_user_messages(self):
        window = window_history(_conversation(12), max_user_messages=10)
        users = [m for m in window if m.role == Role.USER]
        assert len(users) == 10
        assert window[0].content == "mensagem 2"

    def test_tool_result_whose_request_fell_outside_is_dropped(self):
        messages = [
            make_message(Role.USER, "primeira"),
            make_message(Role.ASSISTANT, tool_calls=[make_tool_call(names.CATALOG_SEARCH, call_id="c1")]),
            make_message(Role.USER, "segunda"),
            make_message(Role.TOOL, "{}", tool_call_id="c1", name=names.CATALOG_SEARCH),
        ]
        window = window_history(messages, max_user_messages=1)
        assert window == [make_message(Role.USER, "segunda")]

    def test_window_never_starts_with_tool_message(self):
        messages = []
        for index in range(5):
            messages.append(make_message(Role.USER, f"busca {index}"))
            messages.extend(make_tool_exchange(names.CATALOG_SEARCH, "{}", call_id=f"c{index}"))
            messages.append(make_message(Role.ASSISTANT, f"resultado {index}"))
        window = window_history(messages, max_user_messages=2)
        assert window[0].role == Role.USER
        issued = {c.id for m in window for c in m.tool_calls}
        assert all(m.tool_call_id in issued for m in window if m.role == Role.TOOL)


class TestRecentUserTexts:
    def test_most_recent_first(self):
        assert recent_user_texts(_conversation(5), limit=3) == ["mensagem 4", "mensagem 3", "mensagem 2"]
