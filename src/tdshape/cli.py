from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

import typer
from pydantic import BaseModel

from tdshape.build_details import (
    build_details_for_running_interpreter,
    dump_build_details,
    load_build_details,
)
from tdshape.commands.declarations import (
    UnknownDeclarationError,
    check_pair,
    describe_shape,
    narrow_function,
    validation_response,
)
from tdshape.config import (
    consistency_defaults,
    merge_payload,
    numeric_promotion_enabled,
    validation_defaults,
    validation_ignore_list,
)
from tdshape.exceptions import BuildDetailsError, TypeExpressionError
from tdshape.ingest.python_ingest import IngestResult, ingest_path, iter_python_paths

app = typer.Typer(add_completion=False, help="Check typed dictionary shapes and narrowing functions.")


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log failed sub-checks to stderr."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _emit_json(model: BaseModel | list[BaseModel]) -> None:
    if isinstance(model, list):
        payload = [item.model_dump() for item in model]
    else:
        payload = model.model_dump()
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _numeric_promotion(root: Path, config: Optional[Path], override: Optional[bool]) -> bool:
    defaults = consistency_defaults(root=root, config_path=config)
    return numeric_promotion_enabled(merge_payload({"numeric_promotion": override}, defaults))


def _ingest_or_exit(path: Path) -> IngestResult:
    if not path.is_file():
        raise typer.BadParameter(f"{path} is not a file", param_hint="FILE")
    try:
        return ingest_path(path)
    except (OSError, UnicodeError) as exc:
        raise typer.BadParameter(f"cannot read {path}: {exc}", param_hint="FILE") from exc


def _context_echo(ctx: typer.Context) -> Callable[[str], None]:
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    echo = obj.get("echo")
    return echo if callable(echo) else typer.echo


@app.command("validate")
def validate(
    ctx: typer.Context,
    paths: List[Path] = typer.Argument(..., help="Python files or directories to scan."),
    root: Path = typer.Option(Path("."), "--root", help="Directory holding tdshape.toml."),
    config: Optional[Path] = typer.Option(None, "--config"),
    ignore: List[str] = typer.Option([], "--ignore", help="Diagnostic codes to ignore."),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """Report ill-formed typed dictionary and narrowing declarations."""
    echo = _context_echo(ctx)
    section = validation_defaults(root=root, config_path=config)
    ignored = [*validation_ignore_list(section), *ignore]
    promotion = _numeric_promotion(root, config, None)
    responses = []
    for path in iter_python_paths(paths):
        try:
            responses.append(
                validation_response(path, numeric_promotion=promotion, ignore=ignored)
            )
        except (OSError, UnicodeError) as exc:
            raise typer.BadParameter(f"cannot read {path}: {exc}") from exc
    total = sum(len(response.diagnostics) for response in responses)
    if json_output:
        _emit_json(responses)
    else:
        for response in responses:
            for diagnostic in response.diagnostics:
                location = f"{response.path}:{diagnostic.line}" if diagnostic.line else response.path
                target = f"{diagnostic.subject}.{diagnostic.field}" if diagnostic.field else diagnostic.subject
                echo(f"{location}: {target}: {diagnostic.kind}[{diagnostic.code}] {diagnostic.message}")
        echo(f"{total} diagnostic(s) in {len(responses)} file(s)")
    raise typer.Exit(code=1 if total else 0)


@app.command("check")
def check(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Python file declaring the types."),
    source: str = typer.Argument(..., help="Type whose values are assigned."),
    target: str = typer.Argument(..., help="Type expected at the assignment."),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    numeric_promotion: Optional[bool] = typer.Option(
        None, "--numeric-promotion/--no-numeric-promotion"
    ),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """Decide whether SOURCE is assignable where TARGET is expected."""
    echo = _context_echo(ctx)
    result = _ingest_or_exit(path)
    try:
        response = check_pair(
            result,
            source,
            target,
            numeric_promotion=_numeric_promotion(root, config, numeric_promotion),
        )
    except TypeExpressionError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if json_output:
        _emit_json(response)
    else:
        verdict = "consistent" if response.consistent else "not consistent"
        echo(f"{source} -> {target}: {verdict}")
        for failure in response.failures:
            echo(f"- {failure.field}: [{failure.rule}] {failure.message}")
    raise typer.Exit(code=0 if response.consistent else 1)


@app.command("narrow")
def narrow(
    ctx: typer.Context,
    path: Path = typer.Argument(...),
    function: str = typer.Argument(..., help="Narrowing function name (Class.method for methods)."),
    declared: Optional[str] = typer.Option(
        None, "--declared", help="Declared type of the argument (default: the parameter annotation)."
    ),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """Show the argument type in each branch after calling FUNCTION."""
    echo = _context_echo(ctx)
    result = _ingest_or_exit(path)
    try:
        response = narrow_function(
            result,
            function,
            declared,
            numeric_promotion=_numeric_promotion(root, config, None),
        )
    except (UnknownDeclarationError, TypeExpressionError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    if json_output:
        _emit_json(response)
        return
    echo(f"{response.function} ({response.kind}) on {response.declared}")
    echo(f"  if true:  {response.if_true}")
    echo(f"  if false: {response.if_false}")


@app.command("show")
def show(
    ctx: typer.Context,
    path: Path = typer.Argument(...),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """List the typed dictionaries declared in PATH with their flattened items."""
    echo = _context_echo(ctx)
    result = _ingest_or_exit(path)
    shapes = [describe_shape(shape) for shape in result.shapes]
    if json_output:
        _emit_json(shapes)
        return
    for shape in shapes:
        echo(f"{shape.name} ({shape.openness})")
        for item in shape.fields:
            flags = ["required" if item.required else "not required"]
            if item.read_only:
                flags.append("read-only")
            echo(f"  {item.name}: {item.type} [{', '.join(flags)}]")
        if shape.extra is not None and not shape.extra.implicit:
            mode = "read-only" if shape.extra.read_only else "mutable"
            echo(f"  <extra>: {shape.extra.type} [{mode}]")


@app.command("build-details")
def build_details(
    ctx: typer.Context,
    validate_path: Optional[Path] = typer.Option(
        None, "--validate", help="Validate an existing build-details.json instead of emitting one."
    ),
    output: Optional[Path] = typer.Option(None, "--output", help="Write the document here."),
) -> None:
    """Emit or validate an installation description document."""
    echo = _context_echo(ctx)
    if validate_path is not None:
        try:
            details = load_build_details(validate_path)
        except BuildDetailsError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            for line in exc.errors:
                typer.secho(f"- {line}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        echo(
            f"{validate_path}: valid (schema {details.schema_version}, "
            f"{details.implementation.name} {details.language.version})"
        )
        return
    text = dump_build_details(build_details_for_running_interpreter())
    if output is None:
        typer.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
        echo(f"Wrote installation description: {output}")


def main() -> None:
    app(prog_name="tdshape")
