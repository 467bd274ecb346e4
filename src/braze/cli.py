from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from braze.config import Options, TomlTable, load_options
from braze.environment import Environment
from braze.exceptions import ConfigError
from braze.frontend import elaborate_file
from braze.shim import get_shim

app = typer.Typer(add_completion=False)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log tool traffic."),
) -> None:
    """Accumulate C shim code from Python host files."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _options(
    path: Path,
    *,
    config: Optional[Path],
    diagnostics: Optional[bool] = None,
    timeout_ms: Optional[int] = None,
    warnings_as_errors: Optional[bool] = None,
) -> Options:
    overrides: TomlTable = {
        "diagnostics": diagnostics,
        "diagnostics_timeout_ms": timeout_ms,
        "warnings_as_errors": warnings_as_errors,
    }
    try:
        return load_options(root=path.resolve().parent, config_path=config, overrides=overrides)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _echo_messages(env: Environment, *, err: bool = False) -> None:
    for message in env.messages:
        typer.echo(message.render(), err=err)


@app.command()
def shim(
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Write the shim source accumulated from PATH."""
    env = elaborate_file(path, _options(path, config=config, diagnostics=False))
    _echo_messages(env, err=True)
    text = get_shim(env).source_text()
    if output is None:
        typer.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
    if env.has_errors:
        raise typer.Exit(code=1)


@app.command()
def check(
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
    diagnostics: Optional[bool] = typer.Option(
        None, "--diagnostics/--no-diagnostics", help="Run the shim tool after each section."
    ),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=1),
    warnings_as_errors: Optional[bool] = typer.Option(
        None, "--warnings-as-errors/--no-warnings-as-errors"
    ),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Elaborate PATH and print host messages; exit 1 on errors."""
    options = _options(
        path,
        config=config,
        diagnostics=diagnostics,
        timeout_ms=timeout_ms,
        warnings_as_errors=warnings_as_errors,
    )
    env = elaborate_file(path, options)
    _echo_messages(env)
    raise typer.Exit(code=1 if env.has_errors else 0)


@app.command()
def lsp() -> None:
    """Serve host-file diagnostics over stdio."""
    from braze.server import start

    start()
