"""Unit tests for turn normalization."""

from workbench.llm.base import TextBlock, Turn
from workbench.llm.normalizer import CACHE_CONTROL, normalize_turns


def _has_marker(message: dict) -> bool:
    content = message["content"]
    return isinstance(content, list) and content[0].get("cache_control") == CACHE_CONTROL


class TestNormalizeTurns:
    """Tests for normalize_turns."""

    def test_single_user_turn_is_cache_marked(self) -> None:
        """The only user turn becomes one cache-marked block."""
        result = normalize_turns([Turn(role="user", content="hi")])
        assert result == [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "hi", "cache_control": {"type": "ephemeral"}}
                ],
            }
        ]

    def test_history_turns_are_flat_strings(self) -> None:
        """Earlier turns are sent as plain role/content pairs."""
        turns = [
            Turn(role="user", content="first"),
            Turn(role="assistant", content="reply"),
            Turn(role="user", content="second"),
        ]
        result = normalize_turns(turns)
        assert result[0] == {"role": "user", "content": "first"}
        assert result[1] == {"role": "assistant", "content": "reply"}
        assert _has_marker(result[2])
        assert result[2]["content"][0]["text"] == "second"

    def test_drops_streaming_placeholder(self) -> None:
        """A trailing in-flight assistant turn is never sent."""
        turns = [
            Turn(role="user", content="hi"),
            Turn(role="assistant", content="partial", streaming=True),
        ]
        result = normalize_turns(turns)
        assert len(result) == 1
        assert _has_marker(result[0])

    def test_drops_empty_turns(self) -> None:
        """Empty strings, empty lists and missing content are dropped."""
        turns = [
            Turn(role="user", content="a"),
            Turn(role="assistant", content=""),
            Turn(role="assistant", content=[]),
            Turn(role="assistant", content=None),
            Turn(role="assistant", content="b"),
        ]
        result = normalize_turns(turns)
        assert result == [
            {"role": "user", "content": "a"},
            {"role": "assistant", "content": "b"},
        ]

    def test_trailing_assistant_turn_gets_no_marker(self) -> None:
        """Only a trailing user turn is marked."""
        turns = [
            Turn(role="user", content="q"),
            Turn(role="assistant", content="a"),
        ]
        result = normalize_turns(turns)
        assert not any(_has_marker(m) for m in result)

    def test_flattens_structured_content(self) -> None:
        """Text blocks are concatenated; blocks without text contribute nothing."""
        turns = [
            Turn(
                role="assistant",
                content=[TextBlock(text="Hel"), TextBlock(type="image"), TextBlock(text="lo")],
            ),
            Turn(role="user", content="next"),
        ]
        result = normalize_turns(turns)
        assert result[0] == {"role": "assistant", "content": "Hello"}

    def test_marker_follows_filtering(self) -> None:
        """The marker goes on the last kept turn, not the last input turn."""
        turns = [
            Turn(role="user", content="question"),
            Turn(role="assistant", content="", streaming=True),
        ]
        result = normalize_turns(turns)
        assert _has_marker(result[-1])

    def test_output_never_longer_than_input(self) -> None:
        """Output length is bounded by input length and order is kept."""
        turns = [
            Turn(role="user", content="1"),
            Turn(role="assistant", content="2"),
            Turn(role="user", content=""),
            Turn(role="assistant", content="3"),
            Turn(role="user", content="4"),
        ]
        result = normalize_turns(turns)
        assert len(result) <= len(turns)
        texts = [
            m["content"] if isinstance(m["content"], str) else m["content"][0]["text"]
            for m in result
        ]
        assert texts == ["1", "2", "3", "4"]
        assert sum(_has_marker(m) for m in result) == 1

    def test_ignores_ui_annotations(self) -> None:
        """Unknown keys on incoming turns do not reach the wire format."""
        turn = Turn.model_validate({"role": "user", "content": "hi", "pinned": True})
        result = normalize_turns([turn])
        assert set(result[0]) == {"role", "content"}

    def test_empty_input(self) -> None:
        assert normalize_turns([]) == []
