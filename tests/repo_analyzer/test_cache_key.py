"""Tests for canonical request cache keys."""

import re

import pytest

from repo_analyzer.errors import CacheKeyError
from repo_analyzer.llm.cache_key import build_key_request, canonicalize, generate_key
from repo_analyzer.llm.types import CompletionRequest, Message, ToolCall, ToolDefinition

HEX_KEY = re.compile(r"^[0-9a-f]{64}$")


def make_request(**overrides) -> CompletionRequest:
    """Build a representative request, overriding selected fields."""
    fields = {
        "system_prompt": "You analyze code.",
        "messages": [
            Message(role="user", content="Describe the structure."),
            Message(
                role="assistant",
                content="",
                tool_calls=[ToolCall(id="c1", name="read_file", arguments={"file_path": "a.py"})],
            ),
            Message(role="tool", content='{"content": "x = 1"}', tool_call_id="c1"),
        ],
        "tools": [
            ToolDefinition(
                name="read_file",
                description="Read a file.",
                parameters={"type": "object", "properties": {"file_path": {"type": "string"}}},
            ),
            ToolDefinition(name="list_files", description="List files.", parameters={}),
        ],
        "max_tokens": 8192,
        "temperature": 0.0,
    }
    fields.update(overrides)
    return CompletionRequest(**fields)


# =============================================================================
# Determinism Tests
# =============================================================================


class TestDeterminism:
    """Tests that keys are pure functions of the request."""

    def test_key_is_64_lowercase_hex(self):
        """Test key format."""
        assert HEX_KEY.match(generate_key(make_request()))

    def test_repeated_calls_give_same_key(self):
        """Test that the same value always hashes the same."""
        request = make_request()

        assert generate_key(request) == generate_key(request)
        assert generate_key(request) == generate_key(make_request())

    def test_parameter_dict_order_does_not_matter(self):
        """Test that schema key order is canonicalized."""
        first = make_request(
            tools=[ToolDefinition("t", "d", {"type": "object", "required": ["a"]})]
        )
        second = make_request(
            tools=[ToolDefinition("t", "d", {"required": ["a"], "type": "object"})]
        )

        assert generate_key(first) == generate_key(second)


# =============================================================================
# Invariance Tests
# =============================================================================


class TestInvariance:
    """Tests for fields that must not affect the key."""

    def test_tool_order_invariance(self):
        """Test that reordering tools gives the same key."""
        request = make_request()
        reordered = make_request(tools=list(reversed(request.tools)))

        assert generate_key(request) == generate_key(reordered)

    def test_max_tokens_excluded(self):
        """Test that the completion budget does not affect the key."""
        assert generate_key(make_request(max_tokens=100)) == generate_key(
            make_request(max_tokens=4096)
        )

    def test_whitespace_is_trimmed(self):
        """Test that surrounding whitespace in prompts and descriptions is ignored."""
        padded = make_request(
            system_prompt="  You analyze code.\n",
            messages=[Message(role="user", content="\tDescribe the structure.  ")],
            tools=[ToolDefinition("list_files", "  List files. ", {})],
        )
        plain = make_request(
            messages=[Message(role="user", content="Describe the structure.")],
            tools=[ToolDefinition("list_files", "List files.", {})],
        )

        assert generate_key(padded) == generate_key(plain)

    def test_integer_temperature_matches_float(self):
        """Test that 0 and 0.0 give the same key."""
        assert generate_key(make_request(temperature=0)) == generate_key(
            make_request(temperature=0.0)
        )


# =============================================================================
# Sensitivity Tests
# =============================================================================


class TestSensitivity:
    """Tests for fields that must change the key."""

    def test_message_order_sensitivity(self):
        """Test that swapping two messages changes the key."""
        first = make_request(
            messages=[Message("user", "first"), Message("assistant", "second")]
        )
        swapped = make_request(
            messages=[Message("assistant", "second"), Message("user", "first")]
        )

        assert generate_key(first) != generate_key(swapped)

    def test_message_content_sensitivity(self):
        """Test that different content changes the key."""
        assert generate_key(make_request(messages=[Message("user", "a")])) != generate_key(
            make_request(messages=[Message("user", "b")])
        )

    def test_message_role_sensitivity(self):
        """Test that a different role changes the key."""
        assert generate_key(make_request(messages=[Message("user", "a")])) != generate_key(
            make_request(messages=[Message("assistant", "a")])
        )

    def test_temperature_sensitivity(self):
        """Test that temperature is part of the key."""
        assert generate_key(make_request(temperature=0.0)) != generate_key(
            make_request(temperature=0.7)
        )

    def test_tool_call_id_sensitivity(self):
        """Test that tool result correlation ids are part of the key."""
        first = make_request(messages=[Message("tool", "{}", tool_call_id="a")])
        second = make_request(messages=[Message("tool", "{}", tool_call_id="b")])

        assert generate_key(first) != generate_key(second)


# =============================================================================
# Projection Tests
# =============================================================================


class TestProjection:
    """Tests for build_key_request and canonicalize."""

    def test_tools_sorted_by_name(self):
        """Test that the projection sorts tools."""
        projection = build_key_request(make_request())

        assert [tool.name for tool in projection.tools] == ["list_files", "read_file"]

    def test_projection_has_no_max_tokens(self):
        """Test that max_tokens never reaches the canonical form."""
        assert "max_tokens" not in canonicalize(build_key_request(make_request()))

    def test_unserializable_parameters_raise(self):
        """Test that non-JSON values are reported as CacheKeyError."""
        request = make_request(tools=[ToolDefinition("t", "d", {"default": object()})])

        with pytest.raises(CacheKeyError):
            generate_key(request)

    def test_nan_temperature_raises(self):
        """Test that NaN cannot be canonicalized."""
        with pytest.raises(CacheKeyError):
            generate_key(make_request(temperature=float("nan")))
