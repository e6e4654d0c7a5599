import pytest

from tabagent.execution.sanitizer import CapabilitySanitizer, escape_js_string
from tabagent.execution.scripts import build_click_script, build_type_script

DENY_CORPUS = [
    "(function(){ eval('1+1'); })()",
    "(function(){ return new Function('return 1')(); })()",
    "(function(){ return Function('return this')(); })()",
    "(function(){ setTimeout('alert(1)', 10); })()",
    "(function(){ setInterval(\"tick()\", 10); })()",
    "(function(){ document.body.innerHTML = '<img>'; })()",
    "(function(){ node.outerHTML += '<b>'; })()",
    "(function(){ document.write('<p>'); })()",
    "(function(){ el.insertAdjacentHTML('beforeend', x); })()",
    "(function(){ location.href = 'javascript:alert(1)'; })()",
    "(function(){ frame.src = 'vbscript:msgbox'; })()",
    "(function(){ frame.src = 'data:text/html,<script>'; })()",
    "(function(){ ({}).__proto__.polluted = 1; })()",
    "(function(){ obj.constructor.prototype.x = 1; })()",
    "(function(){ obj['constructor'] = 1; })()",
    "(function(){ Object.setPrototypeOf(a, b); })()",
]


@pytest.mark.parametrize("payload", DENY_CORPUS)
def test_deny_corpus_is_rejected(payload):
    result = CapabilitySanitizer().sanitize(payload, "test")

    assert result.valid is False
    assert result.payload is None
    assert result.error


@pytest.mark.parametrize("payload", [None, 42, b"(function(){})()", "", "   "])
def test_non_string_or_empty_payload_is_rejected(payload):
    assert CapabilitySanitizer().sanitize(payload).valid is False


def test_oversized_payload_is_rejected():
    sanitizer = CapabilitySanitizer(max_payload_bytes=64)
    payload = "(function(){ return '" + "x" * 100 + "'; })()"

    result = sanitizer.sanitize(payload)

    assert result.valid is False
    assert "exceeds 64 bytes" in result.error


def test_payload_must_be_self_invoking():
    sanitizer = CapabilitySanitizer()

    assert sanitizer.sanitize("document.title").valid is False
    assert sanitizer.sanitize("(() => { return 1; })()").valid is True
    assert CapabilitySanitizer(require_invocable=False).sanitize("document.title").valid is True


def test_generated_scripts_pass_the_sanitizer():
    sanitizer = CapabilitySanitizer()

    assert sanitizer.sanitize(build_click_script("#submit")).valid is True
    assert sanitizer.sanitize(build_type_script("input[name='q']", "hello", clear=False)).valid is True


def test_sanitize_is_idempotent():
    sanitizer = CapabilitySanitizer()
    first = sanitizer.sanitize("\n  " + build_click_script("#a") + "  \n")

    second = sanitizer.sanitize(first.payload)

    assert first.valid is True
    assert second.valid is True
    assert second.payload == first.payload


def test_selector_injection_is_escaped_in_click_payload():
    script = build_click_script("x'; DROP TABLE x; --")

    assert "const selector = 'x\\'; DROP TABLE x; --';" in script
    assert "'x'; DROP TABLE x" not in script


def test_double_quote_injection_is_escaped():
    script = build_click_script('"; DROP TABLE x; --')

    assert "const selector = '\\\"; DROP TABLE x; --';" in script


def test_escape_js_string_handles_control_characters():
    assert escape_js_string("a\\b'c\"d\ne\rf") == "a\\\\b\\'c\\\"d\\ne\\rf"
    assert escape_js_string("\u2028") == "\\u2028"
    assert escape_js_string("</script>") == "\\x3c/script>"
