from fastapi import APIRouter, Depends

from nodectl.api.deps import get_backend
from nodectl.api.schemas import BackendRequest
from nodectl.modules.backend import BackendReconciler

router = APIRouter(prefix="/backends", tags=["load-balancer"])


@router.post("")
def add_backend(req: BackendRequest, backend: BackendReconciler = Depends(get_backend)):
    if not req.address:
        raise ValueError("address is required to add a backend")
    outcome = backend.add(req.to_hops(), req.name, req.address, req.port, owner=f"api:{req.name}")
    return {'name': req.name, 'outcome': outcome}


@router.post("/remove")
def remove_backend(req: BackendRequest, backend: BackendReconciler = Depends(get_backend)):
    outcome = backend.remove(req.to_hops(), req.name, owner=f"api:{req.name}")
    return {'name': req.name, 'outcome': outcome}
