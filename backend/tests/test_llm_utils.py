"""Tests for provider JSON decoding."""

import pytest

from learnpath.engine.llm_utils import parse_llm_json_response, strip_trailing_commas


class TestDirectParsing:
    """Raw JSON text."""

    def test_object(self):
        """Should decode a roadmap object."""
        result = parse_llm_json_response('{"learning_path": [], "personalization_reasoning": "ok"}')
        assert result == {"learning_path": [], "personalization_reasoning": "ok"}

    def test_bare_array(self):
        """Should decode a bare item array."""
        result = parse_llm_json_response('[{"content_id": "algebra-1"}]')
        assert result == [{"content_id": "algebra-1"}]

    def test_surrounding_whitespace(self):
        result = parse_llm_json_response('\n\n  {"error": "busy"}  \n')
        assert result == {"error": "busy"}

    def test_scalar_is_not_a_payload(self):
        """Valid JSON that is not an object or array should be rejected."""
        with pytest.raises(ValueError, match="no valid JSON found"):
            parse_llm_json_response('"just a string"')


class TestTrailingCommas:
    """Trailing commas tolerated everywhere."""

    def test_in_object_and_array(self):
        result = parse_llm_json_response('{"topics": ["a", "b",], "estimated_time": 30,}')
        assert result == {"topics": ["a", "b"], "estimated_time": 30}

    def test_strip_helper_leaves_valid_json(self):
        assert strip_trailing_commas('{"a": [1, 2]}') == '{"a": [1, 2]}'

    def test_strip_helper_handles_newlines(self):
        assert strip_trailing_commas('[1,\n  2,\n]') == "[1,\n  2\n]"


class TestCodeBlocks:
    """Fenced code blocks."""

    def test_json_fence(self):
        content = 'Here is the roadmap:\n```json\n{"learning_path": []}\n```\nGood luck!'
        assert parse_llm_json_response(content) == {"learning_path": []}

    def test_unlabelled_fence(self):
        content = '```\n[{"content_id": "geometry-1"}]\n```'
        assert parse_llm_json_response(content) == [{"content_id": "geometry-1"}]

    def test_fence_with_trailing_comma(self):
        content = '```JSON\n{"remedial_items": [{"title": "Review",},]}\n```'
        assert parse_llm_json_response(content) == {"remedial_items": [{"title": "Review"}]}


class TestSubstringExtraction:
    """First balanced object or array inside prose."""

    def test_object_inside_prose(self):
        content = 'Sure! {"difficulty_progression": {"start": "beginner", "end": "advanced"}} Hope it helps.'
        assert parse_llm_json_response(content) == {
            "difficulty_progression": {"start": "beginner", "end": "advanced"}
        }

    def test_brackets_inside_strings_ignored(self):
        content = 'Result: {"personalization_reasoning": "covers {sets} and [lists]", "n": 1} end'
        assert parse_llm_json_response(content) == {
            "personalization_reasoning": "covers {sets} and [lists]",
            "n": 1,
        }

    def test_escaped_quotes(self):
        content = 'Output -> {"title": "The \\"hard\\" part"}'
        assert parse_llm_json_response(content) == {"title": 'The "hard" part'}


class TestFailures:
    """Nothing decodable."""

    @pytest.mark.parametrize("content", ["", None])
    def test_empty(self, content):
        with pytest.raises(ValueError, match="Empty LLM response"):
            parse_llm_json_response(content)

    def test_prose_only(self):
        with pytest.raises(ValueError, match="no valid JSON found"):
            parse_llm_json_response("I am unable to build a roadmap right now.")

    def test_unbalanced(self):
        with pytest.raises(ValueError):
            parse_llm_json_response('{"learning_path": [')
