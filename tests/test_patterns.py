import re

from sitez_analyzer.html_utils import ParsedPage, try_parse_json_fragment
from sitez_analyzer.patterns import ExtractionPattern, first_match, regex_matcher, run_patterns


def _static(*values):
    return lambda page: list(values)


def test_lower_priority_number_wins_regardless_of_declaration_order():
    page = ParsedPage("<p>x</p>", "https://example.com/")
    patterns = [
        ExtractionPattern("email", "text", 30, _static("A@x.io", "b@x.io")),
        ExtractionPattern("email", "markup", 10, _static("a@x.io")),
    ]
    found = run_patterns(patterns, page)
    assert [(m.value, m.source) for m in found] == [("a@x.io", "markup"), ("b@x.io", "text")]


def test_post_process_can_reject_and_limit_stops_early():
    page = ParsedPage("", "https://example.com/")
    patterns = [ExtractionPattern("n", "digits", 10, _static("1", "x", "2", "3"), lambda v: v if v.isdigit() else None)]
    assert [m.value for m in run_patterns(patterns, page, limit=2)] == ["1", "2"]
    assert first_match(patterns, page).value == "1"
    assert first_match([], page) is None


def test_failing_pattern_is_skipped():
    def broken(page):
        raise ValueError("bad table")

    page = ParsedPage("", "https://example.com/")
    patterns = [
        ExtractionPattern("x", "broken", 1, broken),
        ExtractionPattern("x", "ok", 2, _static("value")),
    ]
    assert [m.source for m in run_patterns(patterns, page)] == ["ok"]


def test_regex_matcher_text_vs_html():
    page = ParsedPage('<p>code 42</p><script>var n = 7;</script>', "https://example.com/")
    digits = re.compile(r"\d+")
    assert list(regex_matcher(digits)(page)) == ["42"]
    assert list(regex_matcher(digits, on="html")(page)) == ["42", "7"]


def test_json_fragment_recovery():
    assert try_parse_json_fragment('{"a": 1}') == {"a": 1}
    assert try_parse_json_fragment('/* cdata */ {"a": [1, 2]} ;') == {"a": [1, 2]}
    assert try_parse_json_fragment("not json") is None
    assert try_parse_json_fragment("") is None
