from typing import Optional

import typer

from nodectl.commands._common import emit, executor, fail, hops_from
from nodectl.errors import NodectlError
from nodectl.modules import containers
from nodectl.modules.teardown import TeardownReconciler

app = typer.Typer(help="Inspect and tear down containers.")


@app.command("list")
def list_containers(
    hops: str = typer.Option(..., "--hops", help="YAML file with the hop chain"),
    project: Optional[str] = typer.Option(None, "--project", help="Compose project to filter on"),
):
    """List containers on the target host."""
    try:
        rows = containers.list_containers(executor(), hops_from(hops), project=project)
    except NodectlError as e:
        fail(e)
    for row in rows:
        typer.echo(f"{row.id}\t{row.name}\t{row.image}\t{row.status}")
    typer.echo(f"{len(rows)} container(s)")


@app.command("teardown")
def teardown(
    hops: str = typer.Option(..., "--hops", help="YAML file with the hop chain"),
    stack: str = typer.Option(..., "--stack", help="Stack / compose project name"),
    repo_url: Optional[str] = typer.Option(None, "--repo", help="Git repository holding the compose manifest"),
    workdir: Optional[str] = typer.Option(None, "--workdir", help="Remote directory holding the manifest"),
):
    """Remove every container of a stack and report which strategy did it."""
    try:
        report = TeardownReconciler(executor()).teardown(hops_from(hops), stack, repo_url=repo_url, workdir=workdir)
    except (NodectlError, ValueError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
    emit(report.to_dict())
    if not report.success:
        raise typer.Exit(code=1)
