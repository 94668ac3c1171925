from samvaad.context import Context
from samvaad.events import ConversationErrorEvent, ConversationReadyEvent, ErrorCode


def test_listeners_receive_events_in_order():
    ctx = Context(quiet=True)
    seen = []
    ctx.subscribe(lambda e: seen.append(("first", e.type)))
    ctx.subscribe(lambda e: seen.append(("second", e.type)))
    ctx.emit(ConversationReadyEvent(conversation_id="c1"))
    assert seen == [("first", "conversationReady"), ("second", "conversationReady")]


def test_unsubscribe():
    ctx = Context(quiet=True)
    seen = []
    unsubscribe = ctx.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    ctx.emit(ConversationReadyEvent(conversation_id="c1"))
    assert seen == []


def test_failing_listener_does_not_block_others():
    ctx = Context(quiet=True)
    seen = []

    def broken(_event):
        raise RuntimeError("listener bug")

    ctx.subscribe(broken)
    ctx.subscribe(seen.append)
    ctx.emit(ConversationReadyEvent(conversation_id="c1"))
    assert len(seen) == 1


def test_quiet_context_prints_nothing_but_user_messages(capsys):
    ctx = Context(quiet=True)
    ctx.log("hidden")
    ctx.warn("hidden")
    ctx.error_message("hidden")
    ctx.send_to_user("shown")
    captured = capsys.readouterr()
    assert captured.out == "shown\n"
    assert captured.err == ""


def test_logging_prefixes(capsys):
    ctx = Context()
    ctx.log("step")
    ctx.warn("careful")
    ctx.error_message("broken")
    captured = capsys.readouterr()
    assert captured.out == "[LOG] step\n[WARN] careful\n"
    assert captured.err == "Error: broken\n"


def test_event_wire_shape():
    record = ConversationErrorEvent(conversation_id="c1", error="nope", code=ErrorCode.EMPTY_PROMPT).to_record()
    assert record["type"] == "conversationError"
    assert record["conversationId"] == "c1"
    assert record["code"] == "EMPTY_PROMPT"
    assert "timestamp" in record
