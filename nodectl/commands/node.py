import typer

from nodectl.commands._common import emit, executor, fail, hops_from
from nodectl.errors import NodectlError
from nodectl.models import NodeType
from nodectl.modules import containers
from nodectl.modules.poller import StatusPoller
from nodectl.modules.provisioning import state_of

app = typer.Typer(help="Probe and prepare individual hosts.")


@app.command("status")
def node_status(
    hops: str = typer.Option(..., "--hops", help="YAML file with the hop chain"),
    node_type: NodeType = typer.Option(NodeType.WORKER, "--type", help="Node type to probe as"),
):
    """Show whether a node is installed and running."""
    try:
        status = StatusPoller(executor()).check(hops_from(hops), node_type)
    except NodectlError as e:
        fail(e)
    emit({'state': state_of(status).value, **status.to_dict()})


@app.command("install-runtime")
def install_runtime(hops: str = typer.Option(..., "--hops", help="YAML file with the hop chain")):
    """Install docker unless it already runs workloads."""
    try:
        result = containers.install_runtime(executor(), hops_from(hops))
    except NodectlError as e:
        fail(e)
    emit(result)
