"""Payload templates for interaction commands.

Parameter values are escaped before substitution; the assembled payload still goes
through the sanitizer before any backend sees it.
"""

from __future__ import annotations

from string import Template

from .sanitizer import escape_js_string

CLICK_TEMPLATE = Template(
    """(async function() {
  const selector = '$selector';
  let el;
  try {
    el = document.querySelector(selector);
  } catch (e) {
    return { success: false, result: 'selector_invalid' };
  }
  if (!el) {
    return { success: false, result: 'element_not_found' };
  }
  el.scrollIntoView({ block: 'center' });
  el.click();
  return { success: true, result: 'success' };
})()"""
)

TYPE_TEMPLATE = Template(
    """(async function() {
  const selector = '$selector';
  const text = '$text';
  let el;
  try {
    el = document.querySelector(selector);
  } catch (e) {
    return { success: false, result: 'selector_invalid' };
  }
  if (!el) {
    return { success: false, result: 'element_not_found' };
  }
  el.focus();
  if ($clear) {
    el.value = '';
  }
  el.value = el.value + text;
  el.dispatchEvent(new Event('input', { bubbles: true }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
  return { success: true, result: 'success', value: el.value };
})()"""
)


def build_click_script(selector: str) -> str:
    return CLICK_TEMPLATE.substitute(selector=escape_js_string(selector))


def build_type_script(selector: str, text: str, *, clear: bool = True) -> str:
    return TYPE_TEMPLATE.substitute(
        selector=escape_js_string(selector),
        text=escape_js_string(text),
        clear="true" if clear else "false",
    )
