import pytest

from langchat.agent.decision import (
    Decision,
    DecisionParseError,
    looks_like_decision,
    parse_decision,
    strip_code_fence,
)

SKILL_JSON = '{"use_skill": true, "skill_name": "summarizer", "reason": "long text"}'


@pytest.mark.parametrize(
    "wrapped",
    [
        SKILL_JSON,
        f"```json\n{SKILL_JSON}\n```",
        f"```\n{SKILL_JSON}\n```",
        f"  ```json {SKILL_JSON}```  ",
    ],
)
def test_fenced_and_bare_decisions_parse_identically(wrapped):
    decision = parse_decision(wrapped, "skill")

    assert decision == Decision(positive=True, target_name="summarizer", rationale="long text")


def test_strip_code_fence_leaves_plain_text_untouched():
    assert strip_code_fence("  hello world ") == "hello world"
    assert strip_code_fence("```python\nprint(1)\n```") == "print(1)"


def test_tool_decision_carries_arguments():
    decision = parse_decision(
        '{"use_tool": true, "tool_name": "search", "args": {"q": "python"}, "reason": "lookup"}',
        "tool",
    )

    assert decision.positive is True
    assert decision.target_name == "search"
    assert decision.args == {"q": "python"}
    assert decision.arguments_json() == '{"q": "python"}'


def test_negative_decision_defaults_missing_fields():
    decision = parse_decision('{"use_tool": false, "reason": "not needed"}', "tool")

    assert decision.positive is False
    assert decision.target_name == ""
    assert decision.args is None
    assert decision.arguments_json() == "{}"


@pytest.mark.parametrize("text", ["", "   ", "not json", "[1, 2]", '{"use_skill": "perhaps"}'])
def test_malformed_decisions_raise_parse_error(text):
    with pytest.raises(DecisionParseError):
        parse_decision(text, "skill")


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        parse_decision(SKILL_JSON, "plugin")  # type: ignore[arg-type]


def test_looks_like_decision_checks_kind_marker():
    assert looks_like_decision('```json\n{"use_tool": true}\n```', "tool")
    assert not looks_like_decision('{"use_skill": true}', "tool")
    assert not looks_like_decision("The answer is 42.", "tool")


def test_null_fields_read_as_empty_values():
    skill = parse_decision('{"use_skill": true, "skill_name": "summarizer", "reason": null}', "skill")
    tool = parse_decision('{"use_tool": null, "tool_name": null, "args": null, "reason": null}', "tool")

    assert skill == Decision(positive=True, target_name="summarizer", rationale="")
    assert tool == Decision(positive=False, target_name="", rationale="", args=None)
