"""Helpers shared by CLI commands."""
import json
import sys
from typing import Any, List

import typer

from nodectl.errors import NodectlError
from nodectl.models import Hop
from nodectl.modules.executor import RemoteExecutor
from nodectl.utils import load_hops, redact_sensitive_data, to_plain


def hops_from(path: str) -> List[Hop]:
    try:
        return load_hops(path)
    except (OSError, ValueError) as e:
        typer.echo(f"❌ Could not read hops from {path}: {e}", err=True)
        raise typer.Exit(code=1)


def executor() -> RemoteExecutor:
    return RemoteExecutor()


def emit(data: Any) -> None:
    typer.echo(json.dumps(redact_sensitive_data(to_plain(data)), indent=2, default=str))


def fail(error: NodectlError) -> None:
    typer.echo(f"❌ {type(error).__name__}: {error}", err=True)
    report = getattr(error, 'report', None)
    if report is not None:
        typer.echo(json.dumps(to_plain(report), indent=2, default=str), err=True)
    raise typer.Exit(code=1)
