from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


import pytest


MOVIES_MODULE = '''\
from typing import NotRequired, ReadOnly, TypedDict
from typing_extensions import TypeGuard, TypeIs


class Movie(TypedDict, extra_items=ReadOnly[str | int]):
    name: str


class Film(TypedDict, closed=True):
    name: str
    year: NotRequired[int]


class Catalog(TypedDict, extra_items=int):
    name: str


class Animal:
    pass


class Dog(Animal):
    def is_puppy(self, value: object) -> TypeIs[int]:
        return isinstance(value, int)


def is_str(value: object) -> TypeIs[str]:
    return isinstance(value, str)


def is_bool(value: object) -> TypeIs[bool]:
    return isinstance(value, bool)


def is_int(value: object) -> TypeIs[int]:
    return isinstance(value, int)


def guard_int(value: object) -> TypeGuard[int]:
    return isinstance(value, int)
'''


@pytest.fixture
def movies_path(tmp_path: Path) -> Path:
    path = tmp_path / "movies.py"
    path.write_text(MOVIES_MODULE, encoding="utf-8")
    return path

