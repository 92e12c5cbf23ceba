from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class DiagnosticDTO(BaseModel):
    kind: str
    code: str
    subject: str
    message: str
    field: Optional[str] = None
    line: Optional[int] = None


class ValidationResponse(BaseModel):
    path: str
    shapes: List[str] = []
    contracts: List[str] = []
    diagnostics: List[DiagnosticDTO] = []


class ConsistencyFailureDTO(BaseModel):
    field: str
    rule: str
    message: str


class ConsistencyResponse(BaseModel):
    source: str
    target: str
    consistent: bool
    failures: List[ConsistencyFailureDTO] = []


class NarrowingResponse(BaseModel):
    function: str
    kind: str
    declared: str
    if_true: str
    if_false: str


class ShapeFieldDTO(BaseModel):
    name: str
    type: str
    required: bool
    read_only: bool


class ExtraRuleDTO(BaseModel):
    type: str
    read_only: bool
    implicit: bool = False


class ShapeDTO(BaseModel):
    name: str
    openness: str
    bases: List[str] = []
    fields: List[ShapeFieldDTO] = []
    extra: Optional[ExtraRuleDTO] = None
