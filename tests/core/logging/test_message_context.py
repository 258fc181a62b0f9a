"""Tests for message transport logging context."""

from core.logging.message_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
    set_message_context,
)


class TestMessageContext:
    def setup_method(self):
        clear_message_context()

    def teardown_method(self):
        clear_message_context()

    def test_defaults(self):
        context = get_message_context()
        assert context == {"message_topic": "", "message_partition": -1, "message_offset": -1}

    def test_set_and_get(self):
        set_message_context(topic="orders", partition=1, offset=9, key="k", retries=2)
        context = get_message_context()

        assert context["message_topic"] == "orders"
        assert context["message_partition"] == 1
        assert context["message_offset"] == 9
        assert context["message_key"] == "k"
        assert context["retries"] == 2

    def test_context_manager_restores_previous(self):
        set_message_context(topic="outer", partition=0, offset=1)

        with MessageLogContext(topic="inner", partition=3, offset=4, retries=1):
            assert get_message_context()["message_topic"] == "inner"

        context = get_message_context()
        assert context["message_topic"] == "outer"
        assert context["message_offset"] == 1
        assert "retries" not in context

    def test_context_manager_restores_on_exception(self):
        try:
            with MessageLogContext(topic="inner", partition=0, offset=0):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert get_message_context()["message_topic"] == ""
