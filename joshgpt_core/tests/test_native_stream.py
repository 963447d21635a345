from joshgpt_core.providers.native_stream import (
    NativeStreamAccumulator,
    SseFrame,
    SseFrameDecoder,
    classify_event,
    extract_delta,
)


def test_decoder_frames_and_flush():
    decoder = SseFrameDecoder()
    frames = list(decoder.feed([
        ": comment",
        "event: message.delta",
        "data: {\"content\": \"a\"}",
        "",
        "event: message.delta",
        "data: line1",
        "data: line2",
    ]))
    assert frames[0] == SseFrame(event="message.delta", data="{\"content\": \"a\"}")
    # 流结束时残留的帧也会被 flush
    assert frames[1] == SseFrame(event="message.delta", data="line1\nline2")


def test_extract_delta_strategies():
    assert extract_delta("message.delta", {"delta": "x"}) == "x"
    assert extract_delta("message.delta", {"delta": {"content": "y"}}) == "y"
    assert extract_delta("message", {"output": [{"content": [{"text": "a"}, {"text": "b"}]}]}) == "ab"
    assert extract_delta("chat.end", {"result": {"output": [{"type": "message", "content": "z"}]}}) == "z"
    assert extract_delta("chunk", {"choices": [{"delta": {"content": "c"}}]}) == "c"
    assert extract_delta("response", {"response": {"output": [{"content": [{"text": "r"}]}]}}) == "r"


def test_reasoning_and_terminal_events_do_not_contribute():
    assert extract_delta("reasoning.delta", {"content": "secret"}) == ""
    assert extract_delta("message.done", {"content": "dup"}) == ""
    assert extract_delta("response.completed", {"text": "dup"}) == ""


def test_classify_event():
    assert classify_event("reasoning.start") == "reasoning"
    assert classify_event("done") == "stream-end"
    assert classify_event("message.done") == "stream-end"
    assert classify_event("chat.end") == "stream-end"
    assert classify_event("message.delta") == "stream"
    # 只有 reasoning.* 属于推理事件
    assert classify_event("reasoning_summary") == "stream"
    assert extract_delta("reasoning_summary", {"content": "shown"}) == "shown"


def test_chat_end_contributes_only_without_prior_message_delta():
    acc = NativeStreamAccumulator()
    acc.feed(SseFrame(event="chat.end", data="{\"result\": {\"output\": [{\"content\": \"summary\"}]}}"))
    assert acc.text == "summary"

    acc = NativeStreamAccumulator()
    acc.feed(SseFrame(event="message.delta", data="{\"content\": \"hi\"}"))
    acc.feed(SseFrame(event="chat.end", data="{\"result\": {\"output\": [{\"content\": \"hi\"}]}}"))
    assert acc.text == "hi"


def test_done_marker_and_observer_fault():
    def broken(event):
        raise RuntimeError("observer down")

    acc = NativeStreamAccumulator(on_event=broken)
    acc.feed(SseFrame(event="", data="{\"type\": \"message.delta\", \"content\": \"x\"}"))
    done = acc.feed(SseFrame(event="", data="[DONE]"))
    result = acc.result()

    assert done.event == "done"
    assert [e.event for e in result.events] == ["message.delta", "done"]
    assert result.text == "x"
