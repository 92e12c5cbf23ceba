"""Installation description documents (``build-details.json``).

The document describes one interpreter installation: its language version,
implementation, ABI and file suffixes, plus the ``c_api`` and ``libpython``
sections when the installation ships headers or a shared/static library.
"""

from __future__ import annotations

import importlib.machinery
import json
import os
import sys
import sysconfig
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from tdshape.exceptions import BuildDetailsError

SCHEMA_VERSION = 1

ReleaseLevel = Literal["alpha", "beta", "candidate", "final"]


class VersionParts(BaseModel):
    model_config = ConfigDict(extra="forbid")

    major: int
    minor: int
    micro: int
    releaselevel: ReleaseLevel
    serial: int


class LanguageSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str
    version_parts: VersionParts

    @model_validator(mode="after")
    def _version_matches_parts(self) -> LanguageSection:
        expected = f"{self.version_parts.major}.{self.version_parts.minor}"
        if self.version != expected:
            raise ValueError(
                f"language.version {self.version!r} does not match version_parts ({expected})"
            )
        return self


class ImplementationSection(BaseModel):
    # Keys other than name are implementation-defined.
    model_config = ConfigDict(extra="allow")

    name: str


class AbiSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    flags: list[str] = []
    extension_suffix: Optional[str] = None
    stable_abi_suffix: Optional[str] = None


class SuffixesSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: list[str] = []
    bytecode: list[str] = []
    optimized_bytecode: list[str] = []
    debug_bytecode: list[str] = []
    extensions: list[str] = []


class LibpythonSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dynamic: Optional[str] = None
    dynamic_stableabi: Optional[str] = None
    static: Optional[str] = None
    link_extensions: Optional[bool] = None


class CApiSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    headers: str
    pkgconfig_path: Optional[str] = None


class BuildDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1]
    base_prefix: Optional[str] = None
    base_interpreter: Optional[str] = None
    platform: Optional[str] = None
    language: LanguageSection
    implementation: ImplementationSection
    abi: Optional[AbiSection] = None
    suffixes: Optional[SuffixesSection] = None
    libpython: Optional[LibpythonSection] = None
    c_api: Optional[CApiSection] = None
    arbitrary_data: Optional[dict[str, Any]] = None


def _validation_messages(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location or '<root>'}: {error.get('msg', 'invalid value')}")
    return messages


def parse_build_details(payload: Mapping[str, object]) -> BuildDetails:
    try:
        return BuildDetails.model_validate(dict(payload))
    except ValidationError as exc:
        errors = _validation_messages(exc)
        raise BuildDetailsError(
            f"invalid installation description ({len(errors)} error(s))",
            errors=errors,
        ) from exc


def load_build_details(path: Path) -> BuildDetails:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BuildDetailsError(f"cannot read {path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise BuildDetailsError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise BuildDetailsError(f"{path} must contain a JSON object")
    return parse_build_details(payload)


def dump_build_details(details: BuildDetails) -> str:
    payload = details.model_dump(mode="json", exclude_none=True)
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def _config_var(name: str) -> str | None:
    value = sysconfig.get_config_var(name)
    return str(value) if value else None


def _libpython_section() -> LibpythonSection | None:
    library = _config_var("LDLIBRARY")
    libdir = _config_var("LIBDIR")
    if library is None or libdir is None:
        return None
    location = os.path.join(libdir, library)
    dynamic = location if not library.endswith(".a") else None
    static_name = _config_var("LIBRARY")
    static = os.path.join(libdir, static_name) if static_name else None
    return LibpythonSection(
        dynamic=dynamic,
        static=static,
        link_extensions=bool(sysconfig.get_config_var("Py_ENABLE_SHARED")),
    )


def _c_api_section() -> CApiSection | None:
    include = sysconfig.get_path("include")
    if not include or not os.path.isdir(include):
        return None
    libpc = _config_var("LIBPC")
    return CApiSection(headers=include, pkgconfig_path=libpc)


def build_details_for_running_interpreter() -> BuildDetails:
    """Describe the interpreter this process runs on."""
    version = sys.version_info
    implementation = sys.implementation
    implementation_payload: dict[str, object] = {
        "name": implementation.name,
        "cache_tag": implementation.cache_tag,
        "hexversion": implementation.hexversion,
        "version": {
            "major": implementation.version.major,
            "minor": implementation.version.minor,
            "micro": implementation.version.micro,
            "releaselevel": implementation.version.releaselevel,
            "serial": implementation.version.serial,
        },
    }
    abiflags = getattr(sys, "abiflags", "")
    return BuildDetails(
        schema_version=SCHEMA_VERSION,
        base_prefix=sys.base_prefix,
        base_interpreter=sys.executable or None,
        platform=sysconfig.get_platform(),
        language=LanguageSection(
            version=f"{version.major}.{version.minor}",
            version_parts=VersionParts(
                major=version.major,
                minor=version.minor,
                micro=version.micro,
                releaselevel=version.releaselevel,
                serial=version.serial,
            ),
        ),
        implementation=ImplementationSection(**implementation_payload),
        abi=AbiSection(
            flags=list(abiflags),
            extension_suffix=_config_var("EXT_SUFFIX"),
            stable_abi_suffix=next(
                (suffix for suffix in importlib.machinery.EXTENSION_SUFFIXES if ".abi3" in suffix),
                None,
            ),
        ),
        suffixes=SuffixesSection(
            source=list(importlib.machinery.SOURCE_SUFFIXES),
            bytecode=list(importlib.machinery.BYTECODE_SUFFIXES),
            extensions=list(importlib.machinery.EXTENSION_SUFFIXES),
        ),
        libpython=_libpython_section(),
        c_api=_c_api_section(),
    )
