import pytest

from workbook.errors import MalformedStructuredOutput
from workbook.llm_parsing import extract_guarded_code, parse_json_content


def test_extracts_block_and_surrounding_context():
    raw = "Some context\n```javascript\nconst x = 1;\nconst y = 2;\n```\nMore context"
    out = extract_guarded_code(raw)
    assert out.app == "const x = 1;\nconst y = 2;"
    assert out.context == "Some context\n\nMore context"


def test_python_fence_and_case_insensitive_tag():
    raw = "Here you go:\n```Python\nexport default def App(props):\n    return None\n```\nEnjoy"
    out = extract_guarded_code(raw)
    assert out.app == "export default def App(props):\n    return None"
    assert out.context == "Here you go:\n\nEnjoy"


def test_no_block_returns_input_verbatim():
    raw = "def App(props):\n    return None"
    out = extract_guarded_code(raw)
    assert out.app == raw
    assert out.context == ""


def test_empty_input():
    out = extract_guarded_code("")
    assert out.app == ""
    assert out.context == ""
    assert tuple(extract_guarded_code(None)) == ("", "")


def test_first_block_wins():
    raw = "a\n```jsx\nfirst\n```\nb\n```jsx\nsecond\n```\n"
    out = extract_guarded_code(raw)
    assert out.app == "first"
    assert "second" in out.context


def test_untagged_fence_is_not_code():
    raw = "```\nplain\n```"
    out = extract_guarded_code(raw)
    assert out.app == raw


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('{"a": 1}', {"a": 1}),
        ('Sure!\n```\n{"a": [1, 2,]}\n```', {"a": [1, 2]}),
        ('```text\nnope\n```\n```json\n{"b": 2}\n```', {"b": 2}),
        ('The result is {"c": "x}y"} as requested.', {"c": "x}y"}),
        ("{“d”: “e”}", {"d": "e"}),
    ],
)
def test_parse_json_content_repairs_common_noise(raw, expected):
    assert parse_json_content(raw) == expected


def test_parse_json_content_gives_up_with_raw_text():
    with pytest.raises(MalformedStructuredOutput) as info:
        parse_json_content("{broken")
    assert info.value.raw == "{broken"
