"""
Helpers to carry the configured culture (locale identifier) into collection threads.
"""

from __future__ import annotations

import contextvars
import locale
from contextlib import contextmanager
from typing import Iterator

from ..exceptions import UnknownCultureError

INVARIANT_CULTURE = ""

DEFAULT_KEY: contextvars.ContextVar[str] = contextvars.ContextVar(
    "perf_relay_culture", default=INVARIANT_CULTURE
)

_INVARIANT_ALIASES = frozenset({"", "c", "posix", "invariant"})


def resolve_culture(name: str) -> str:
    """Validate a culture identifier such as ``en-US`` or ``de_DE``.

    Returns:
        The identifier in ``ll_CC`` form, or the invariant culture ("").

    Raises:
        UnknownCultureError: If the identifier is not a known locale.
    """
    if name is None:
        raise UnknownCultureError("Culture identifier is missing")
    candidate = str(name).strip()
    if candidate.lower() in _INVARIANT_ALIASES:
        return INVARIANT_CULTURE

    key = candidate.replace("-", "_").lower()
    if key not in locale.locale_alias:
        raise UnknownCultureError(f"Unknown culture '{name}'; verify that it is a known culture string")

    language, _, region = candidate.replace("-", "_").partition("_")
    if region:
        return f"{language.lower()}_{region.upper()}"
    return language.lower()


def current_culture() -> str:
    """Culture of the running cycle, for watchers that format locale-sensitive values."""
    return DEFAULT_KEY.get()


@contextmanager
def use_culture(culture: str) -> Iterator[str]:
    """Set ``culture`` for the executing context and restore the previous value on exit."""
    token = DEFAULT_KEY.set(culture)
    try:
        yield culture
    finally:
        DEFAULT_KEY.reset(token)


__all__ = ["DEFAULT_KEY", "INVARIANT_CULTURE", "current_culture", "resolve_culture", "use_culture"]
