"""Payload screening, execution strategies and navigation URL policy."""

from .sanitizer import CapabilitySanitizer, SanitizeResult, escape_js_string
from .scripts import build_click_script, build_type_script
from .strategies import ExecutionStrategyChain, StrategyChainState, StrategyOutcome
from .url_policy import UrlPolicy, normalize_url, validate_url

__all__ = [
    "CapabilitySanitizer",
    "ExecutionStrategyChain",
    "SanitizeResult",
    "StrategyChainState",
    "StrategyOutcome",
    "UrlPolicy",
    "build_click_script",
    "build_type_script",
    "escape_js_string",
    "normalize_url",
    "validate_url",
]
