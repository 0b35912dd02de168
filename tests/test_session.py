import threading
import time

import pytest

from langchat.agent.react import MAX_ITERATIONS_MESSAGE
from langchat.agent.session import ConversationSession
from langchat.core.utils.config import DEFAULT_SYSTEM_PROMPT, Settings
from langchat.core.utils.deadline import CancellationError, Deadline
from langchat.core.utils.logger import get_correlation_id
from langchat.providers.llm.base import Completion, ModelInvocationError, Role, ToolCall
from langchat.skills.loader import SkillDescriptor
from langchat.tools.registry import FunctionTool

from conftest import FakeLLMClient, StaticBootstrapper, tool_call


def _session(client, settings=None, skills=(), tools=()):
    return ConversationSession(
        client,
        settings=settings or Settings(chat_timeout=10.0),
        bootstrapper=StaticBootstrapper(skills=skills, tools=tools),
    )


def _roles(session):
    return [message.role for message in session.history]


def test_history_starts_with_system_prompt():
    session = _session(FakeLLMClient(["x"]))

    assert len(session.history) == 1
    assert session.history[0].role is Role.SYSTEM
    assert session.history[0].first_text == DEFAULT_SYSTEM_PROMPT
    assert session.loaded is True
    assert session.loading is False


def test_plain_chat_appends_exactly_two_messages():
    client = FakeLLMClient(["hi there"])
    session = _session(client)

    reply = session.chat("hello")

    assert reply == "hi there"
    assert len(client.calls) == 1
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI]
    assert session.history[-1].first_text == "hi there"
    assert [m.first_text for m in client.calls[0].messages] == [DEFAULT_SYSTEM_PROMPT, "hello"]


def test_chat_stream_relays_chunks_in_order():
    client = FakeLLMClient(["streaming works fine"])
    session = _session(client)
    chunks = []

    reply = session.chat_stream("go", on_chunk=chunks.append)

    assert b"".join(chunks).decode("utf-8") == reply == "streaming works fine"
    assert len(chunks) > 1


def test_sink_errors_do_not_abort_generation():
    client = FakeLLMClient(["still answered"])
    session = _session(client)

    def broken_sink(chunk):
        raise IOError("client went away")

    assert session.chat_stream("go", on_chunk=broken_sink) == "still answered"
    assert session.history[-1].first_text == "still answered"


def test_scenario_skill_output_returned_verbatim():
    skill_tool = FunctionTool("summarize_text", lambda text: "short", description="Summarize.")
    skill = SkillDescriptor(
        name="summarizer",
        description="Summarize long documents",
        body="Summarize in one line.",
        tools=[skill_tool],
    )
    client = FakeLLMClient(
        [
            '{"use_skill": true, "skill_name": "summarizer", "reason": "x"}',
            tool_call("summarize_text", '{"input": "long text"}'),
            "A one line summary.",
        ]
    )
    session = _session(client, skills=[skill], settings=Settings(tool_support=True, chat_timeout=10.0))

    reply = session.chat("please summarize this", enable_skills=True)

    assert reply == "A one line summary."
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI]
    assert session.history[-1].first_text == "A one line summary."

    loop_first_call = client.calls[1]
    assert [t["function"]["name"] for t in loop_first_call.tools] == ["summarize_text"]
    texts = [m.first_text for m in loop_first_call.messages]
    assert texts == ["Skill: summarizer\nSummarize in one line.", "please summarize this"]


def test_skill_selection_failure_falls_back_to_direct_generation():
    skill = SkillDescriptor(name="summarizer", description="Summarize")
    client = FakeLLMClient(["this is not json", "direct answer"])
    session = _session(client, skills=[skill])

    assert session.chat("hello", enable_skills=True) == "direct answer"
    assert len(client.calls) == 2
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI]


def test_skill_loop_without_text_falls_through():
    skill = SkillDescriptor(name="summarizer", description="Summarize")
    client = FakeLLMClient(
        [
            '{"use_skill": true, "skill_name": "summarizer", "reason": "x"}',
            Completion(text=""),
            "fallback reply",
        ]
    )
    session = _session(client, skills=[skill])

    assert session.chat("hello", enable_skills=True) == "fallback reply"
    assert len(session.history) == 3


def test_skill_path_ignored_when_disabled():
    skill = SkillDescriptor(name="summarizer", description="Summarize")
    client = FakeLLMClient(["plain"])
    session = _session(client, skills=[skill])

    assert session.chat("hello") == "plain"
    assert len(client.calls) == 1


def test_scenario_negative_tool_decision_makes_one_extra_call(echo_tool):
    client = FakeLLMClient(['{"use_tool": false, "reason": "not needed"}', "direct"])
    session = _session(client, tools=[echo_tool])

    assert session.chat("hello", enable_mcp=True) == "direct"
    assert len(client.calls) == 2
    assert client.calls[1].streamed is False
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI]


def test_text_tool_decision_returns_formatted_result(echo_tool):
    client = FakeLLMClient(['{"use_tool": true, "tool_name": "echo", "args": {"input": "ping"}, "reason": "r"}'])
    session = _session(client, tools=[echo_tool])

    reply = session.chat("echo ping", enable_mcp=True)

    assert reply == "I used the 'echo' tool to help with your request. Here's the result:\n\necho:ping"
    assert len(client.calls) == 1
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI]


def test_failing_selected_tool_falls_back(failing_tool):
    client = FakeLLMClient(['{"use_tool": true, "tool_name": "explode", "reason": "r"}', "sorry"])
    session = _session(client, tools=[failing_tool])

    assert session.chat("blow up", enable_mcp=True) == "sorry"


def test_structured_tool_round_trip_keeps_call_before_results(echo_tool):
    settings = Settings(tool_support=True, chat_timeout=10.0)
    client = FakeLLMClient(
        [
            Completion(
                text="checking",
                tool_calls=[
                    ToolCall("c1", "echo", '{"input": "one"}'),
                    ToolCall("c2", "echo", '{"input": "two"}'),
                ],
            ),
            "both echoed",
        ]
    )
    session = _session(client, settings=settings, tools=[echo_tool])

    assert session.chat("echo twice", enable_mcp=True) == "both echoed"
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI, Role.TOOL, Role.TOOL, Role.AI]
    ai_call = session.history[2]
    assert [call.id for call in ai_call.tool_calls] == ["c1", "c2"]
    assert [m.tool_results[0].content for m in session.history[3:5]] == ["echo:one", "echo:two"]
    assert client.calls[0].tools[0]["function"]["name"] == "echo"
    assert client.calls[1].tools is None


def test_cancelled_tool_exchange_leaves_no_unanswered_calls():
    deadline = Deadline.never()
    ran = []

    def step(text):
        ran.append(text)
        if text == "two":
            deadline.cancel()
        return f"done:{text}"

    tool = FunctionTool("step", step, parameters={"type": "object", "properties": {"input": {"type": "string"}}})
    client = FakeLLMClient(
        [
            Completion(
                tool_calls=[
                    ToolCall("c1", "step", '{"input": "one"}'),
                    ToolCall("c2", "step", '{"input": "two"}'),
                    ToolCall("c3", "step", '{"input": "three"}'),
                ]
            ),
            "recovered",
        ]
    )
    session = _session(client, settings=Settings(tool_support=True, chat_timeout=10.0), tools=[tool])

    with pytest.raises(CancellationError):
        session.chat("run all", enable_mcp=True, deadline=deadline)

    assert ran == ["one", "two"]
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN]
    assert session.chat("again") == "recovered"
    requested = {call.id for m in session.history for call in m.tool_calls}
    answered = {result.call_id for m in session.history for result in m.tool_results}
    assert requested == answered


def test_structured_round_trip_without_calls_falls_through(echo_tool):
    settings = Settings(tool_support=True, chat_timeout=10.0)
    client = FakeLLMClient(["no tools needed", "final"])
    session = _session(client, settings=settings, tools=[echo_tool])

    assert session.chat("hi", enable_mcp=True) == "final"
    assert _roles(session) == [Role.SYSTEM, Role.HUMAN, Role.AI]


def test_model_failure_keeps_human_message():
    client = FakeLLMClient([ModelInvocationError("backend down")])
    session = _session(client)

    with pytest.raises(ModelInvocationError):
        session.chat("hello")

    assert _roles(session) == [Role.SYSTEM, Role.HUMAN]


def test_cancelled_call_fails_but_session_stays_usable():
    client = FakeLLMClient(["ok"])
    session = _session(client)
    deadline = Deadline.never()
    deadline.cancel()

    with pytest.raises(CancellationError):
        session.chat("first", deadline=deadline)

    assert session.chat("second") == "ok"


def test_concurrent_calls_never_interleave():
    gate = threading.Event()
    first_started = threading.Event()

    def slow_reply(messages, tools=None):
        if messages[-1].first_text == "first":
            first_started.set()
            gate.wait(5)
        return Completion(text=f"reply to {messages[-1].first_text}")

    client = FakeLLMClient([slow_reply])
    session = _session(client)
    results = {}

    def run(name):
        results[name] = session.chat(name)

    first = threading.Thread(target=run, args=("first",))
    first.start()
    assert first_started.wait(5)
    second = threading.Thread(target=run, args=("second",))
    second.start()
    time.sleep(0.05)
    assert [m.first_text for m in session.history][1:] == ["first"]
    gate.set()
    first.join(5)
    second.join(5)

    assert [m.first_text for m in session.history][1:] == [
        "first",
        "reply to first",
        "second",
        "reply to second",
    ]


def test_waiting_for_busy_session_honours_deadline():
    release = threading.Event()
    started = threading.Event()

    def blocking(messages, tools=None):
        started.set()
        release.wait(5)
        return Completion(text="done")

    session = _session(FakeLLMClient([blocking]))
    worker = threading.Thread(target=session.chat, args=("hold",))
    worker.start()
    assert started.wait(5)

    with pytest.raises(CancellationError):
        session.chat("impatient", deadline=Deadline.after(0.05))

    release.set()
    worker.join(5)
    assert [m.first_text for m in session.history][1:] == ["hold", "done"]


def test_correlation_id_is_scoped_to_the_call():
    seen = []

    def capture(messages, tools=None):
        seen.append(get_correlation_id())
        return Completion(text="ok")

    session = _session(FakeLLMClient([capture]))
    session.chat("hi")

    assert seen == [session.session_id]
    assert get_correlation_id() == "-"


def test_context_manager_closes_bootstrapper():
    bootstrapper = StaticBootstrapper()
    with ConversationSession(FakeLLMClient(["x"]), bootstrapper=bootstrapper):
        pass

    assert bootstrapper.closed == 1


def test_skill_loop_uses_iteration_budget_from_settings():
    skill_tool = FunctionTool("step", lambda text: "again", description="Keep going.")
    skill = SkillDescriptor(name="looper", description="Loops", tools=[skill_tool])
    settings = Settings(skill_max_iterations=2, chat_timeout=10.0)
    client = FakeLLMClient(['{"use_skill": true, "skill_name": "looper", "reason": "x"}', tool_call("step")])
    session = _session(client, settings=settings, skills=[skill])

    assert session.chat("loop", enable_skills=True) == MAX_ITERATIONS_MESSAGE
    assert len(client.calls) == 3
