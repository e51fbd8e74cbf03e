import typer

from nodectl.commands._common import emit, executor, fail, hops_from
from nodectl.errors import NodectlError
from nodectl.modules.backend import BackendReconciler

app = typer.Typer(help="Manage load balancer backends.")


@app.command("add-backend")
def add_backend(
    hops: str = typer.Option(..., "--hops", help="YAML file with the hop chain to the load balancer"),
    name: str = typer.Option(..., "--name", help="Control-plane node name"),
    address: str = typer.Option(..., "--address", help="Control-plane node address"),
    port: int = typer.Option(6443, "--port", help="API server port"),
):
    """Ensure one backend line exists for a control-plane node."""
    try:
        outcome = BackendReconciler(executor()).add(hops_from(hops), name, address, port)
    except NodectlError as e:
        fail(e)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
    emit({'name': name, 'outcome': outcome})


@app.command("remove-backend")
def remove_backend(
    hops: str = typer.Option(..., "--hops", help="YAML file with the hop chain to the load balancer"),
    name: str = typer.Option(..., "--name", help="Control-plane node name"),
):
    """Delete the backend line for a node."""
    try:
        outcome = BackendReconciler(executor()).remove(hops_from(hops), name)
    except NodectlError as e:
        fail(e)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
    emit({'name': name, 'outcome': outcome})
