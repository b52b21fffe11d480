import pytest

from services.template_renderer import lint_template, render, template_variables, to_text


# ---------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------

def test_simple_substitution():
    assert render("{a}", {"a": 5}) == "5"


def test_missing_variable_renders_bracketed_name():
    assert render("Total: {missing}", {}) == "Total: [missing]"
    assert render("{a.b}", {"a": {"b": None}}) == "[a.b]"


def test_dotted_paths_and_list_indices():
    data = {"cashData": {"totalBalance": 1250000}, "rows": [{"name": "Acme"}]}
    assert render("{cashData.totalBalance} / {rows.0.name}", data) == "1250000 / Acme"


@pytest.mark.parametrize("value,expected", [
    (True, "true"),
    (False, "false"),
    (2.0, "2"),
    (2.5, "2.5"),
    ({"a": 1}, '{"a": 1}'),
    ([1, 2], "[1, 2]"),
])
def test_to_text(value, expected):
    assert to_text(value) == expected


def test_render_is_pure():
    data = {"items": [{"name": "A"}], "n": 1}
    template = "{#each items}{name}{/each}{n}"
    first = render(template, data)
    assert render(template, data) == first
    assert data == {"items": [{"name": "A"}], "n": 1}


def test_empty_template_and_bad_data():
    assert render("", {"a": 1}) == ""
    assert render(None, None) == ""
    assert render("{a}", None) == "[a]"


def test_plain_braces_are_left_alone():
    assert render("json: {\"k\": 1} {}", {}) == "json: {\"k\": 1} {}"


# ---------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------

def test_currency_filter_defaults_to_rupees():
    assert render("Balance: {cashData.totalBalance|currency}", {"cashData": {"totalBalance": 1250000}}) \
        == "Balance: ₹1,250,000.00"


def test_filter_arguments():
    data = {"amount": 1234.5, "ratio": 12.3456}
    assert render("{amount | currency:USD}", data) == "$1,234.50"
    assert render("{ratio|percent:2}", data) == "12.35%"
    assert render("{amount|number:1}", data) == "1,234.5"


def test_default_filter_only_applies_when_missing():
    assert render("{owner|default:'nobody'}", {}) == "nobody"
    assert render("{owner|default:'nobody'}", {"owner": "Ravi"}) == "Ravi"


def test_unknown_or_failing_filter_falls_back_to_value():
    assert render("{name|sparkle}", {"name": "Acme"}) == "Acme"
    assert render("{name|currency}", {"name": "Acme"}) == "Acme"


# ---------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------

@pytest.mark.parametrize("severity,expected", [
    ("critical", "Act now"),
    ("warning", "Watch"),
    ("ok", "Fine"),
])
def test_if_elseif_else(severity, expected):
    template = "{#if severity == 'critical'}Act now{#elseif severity === 'warning'}Watch{#else}Fine{/if}"
    assert render(template, {"severity": severity}) == expected


def test_nested_if_inside_each():
    data = {"bills": [{"vendor": "A", "overdue": True}, {"vendor": "B", "overdue": False}]}
    template = "{#each bills}{index}. {vendor}{#if overdue} (overdue){/if}\n{/each}"
    assert render(template, data) == "1. A (overdue)\n2. B\n"


def test_each_exposes_this_for_scalars():
    assert render("{#each tags}[{this}]{/each}", {"tags": ["x", "y"]}) == "[x][y]"


def test_each_over_missing_or_non_list_renders_nothing():
    assert render("a{#each nope}x{/each}b", {}) == "ab"
    assert render("a{#each n}x{/each}b", {"n": 3}) == "ab"


def test_malformed_condition_is_false():
    assert render("{#if a >}yes{#else}no{/if}", {"a": 1}) == "no"


def test_unmatched_close_and_stray_else_render_literally():
    assert render("a{/if}b", {}) == "a{/if}b"
    assert render("a{#else}b", {}) == "a{#else}b"


def test_unclosed_block_closes_at_end():
    assert render("{#if show}visible", {"show": True}) == "visible"
    assert render("{#if show}visible", {"show": False}) == ""


# ---------------------------------------------------------------------
# Lint / variables
# ---------------------------------------------------------------------

def test_lint_reports_each_problem():
    findings = lint_template("{#if a >}x{/if}{#else}{/each}{#each}y{/each}{#if b}")
    codes = [f.code for f in findings]
    assert codes == [
        "malformed_condition",
        "stray_branch_tag",
        "unmatched_close_tag",
        "malformed_condition",
        "unclosed_block",
    ]


def test_clean_template_has_no_findings():
    assert lint_template("{#if a}{b|currency}{#else}none{/if}") == []
    assert lint_template(None) == []


def test_template_variables_lists_roots_once():
    assert template_variables("{a.b} {c|number} {a.d}") == ["a", "c"]
