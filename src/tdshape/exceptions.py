"""Exception types raised at tdshape boundaries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from tdshape.analysis.diagnostics import Diagnostic


class NeverRaise(RuntimeError):
    """Sentinel exception for code paths the type model proves unreachable.

    Reaching one means a type variant or descriptor slipped past the
    constructors that are supposed to normalize it.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.reason = message
        self.env = dict(env or {})


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""


class TypeExpressionError(ValueError):
    """Annotation text that does not denote a supported type expression."""

    def __init__(self, message: str, *, text: str = ""):
        super().__init__(message)
        self.text = text


class IllFormedDeclarationError(Exception):
    """A record-shape or narrowing declaration failed construction-time checks."""

    def __init__(self, subject: str, diagnostics: Sequence[Diagnostic]):
        self.subject = subject
        self.diagnostics = tuple(diagnostics)
        summary = "; ".join(f"{d.code}: {d.message}" for d in self.diagnostics)
        super().__init__(f"ill-formed declaration {subject!r}: {summary}")

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(diagnostic.code for diagnostic in self.diagnostics)


class BuildDetailsError(ValueError):
    """Installation description document that cannot be loaded or validated."""

    def __init__(self, message: str, *, errors: Sequence[str] = ()):
        super().__init__(message)
        self.errors = tuple(errors)
