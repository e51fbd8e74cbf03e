from fastapi import APIRouter, Depends

from nodectl.api.deps import get_executor, get_teardown
from nodectl.api.schemas import ContainerListRequest, HopsRequest, TeardownRequest
from nodectl.errors import ReconciliationFailure
from nodectl.modules import containers
from nodectl.modules.executor import RemoteExecutor
from nodectl.modules.teardown import TeardownReconciler
from nodectl.utils import to_plain

router = APIRouter(prefix="/containers", tags=["containers"])


@router.post("/runtime")
def install_runtime(req: HopsRequest, executor: RemoteExecutor = Depends(get_executor)):
    return containers.install_runtime(executor, req.to_hops())


@router.post("/list")
def list_containers(req: ContainerListRequest, executor: RemoteExecutor = Depends(get_executor)):
    rows = containers.list_containers(executor, req.to_hops(), project=req.project, use_sudo=req.use_sudo)
    return {'containers': to_plain(rows), 'count': len(rows)}


@router.post("/teardown")
def teardown_stack(req: TeardownRequest, reconciler: TeardownReconciler = Depends(get_teardown)):
    report = reconciler.teardown(req.to_hops(), req.stack, repo_url=req.repo_url, workdir=req.workdir)
    if not report.success:
        raise ReconciliationFailure(report.message, report=report.to_dict())
    return report.to_dict()
