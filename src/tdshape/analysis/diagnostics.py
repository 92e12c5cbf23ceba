from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable


class DiagnosticKind(StrEnum):
    ILL_FORMED_DECLARATION = "IllFormedDeclaration"
    INVALID_LITERAL = "InvalidLiteral"
    INGEST = "IngestError"


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    code: str
    subject: str
    message: str
    field: str | None = None
    line: int | None = None

    def render(self) -> str:
        location = f"{self.subject}.{self.field}" if self.field else self.subject
        prefix = f"{self.line}: " if self.line is not None else ""
        return f"{prefix}{location}: {self.kind.value}[{self.code}] {self.message}"


def ill_formed(subject: str, code: str, message: str, *, field: str | None = None) -> Diagnostic:
    return Diagnostic(
        kind=DiagnosticKind.ILL_FORMED_DECLARATION,
        code=code,
        subject=subject,
        message=message,
        field=field,
    )


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    return sorted(
        diagnostics,
        key=lambda d: (d.line if d.line is not None else -1, d.subject, d.field or "", d.code),
    )


def filter_ignored(diagnostics: Iterable[Diagnostic], ignore: Iterable[str]) -> list[Diagnostic]:
    ignored = {code.strip() for code in ignore if code.strip()}
    return [diagnostic for diagnostic in diagnostics if diagnostic.code not in ignored]
