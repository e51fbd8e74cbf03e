from fastapi import APIRouter, Depends

from nodectl.api.deps import get_provisioner
from nodectl.api.schemas import NodeCreate
from nodectl.models import NodeRecord
from nodectl.modules.provisioning import NodeProvisioner, role_of
from nodectl.utils import record_to_dict

router = APIRouter(prefix="/nodes", tags=["nodes"])


@router.post("", status_code=201)
def register_node(req: NodeCreate, provisioner: NodeProvisioner = Depends(get_provisioner)):
    record = provisioner.register(NodeRecord(
        id=req.id, infra_id=req.infra_id, name=req.name, type=req.type, hops=req.to_hops(),
    ))
    return record_to_dict(record)


@router.get("/{node_id}")
def get_node(node_id: str, provisioner: NodeProvisioner = Depends(get_provisioner)):
    record = provisioner.store.get(node_id)
    data = record_to_dict(record)
    role = role_of(record)
    data['role'] = role.value if role else None
    data['tasks'] = [t.to_dict() for t in provisioner.tasks_for(node_id)]
    return data


@router.post("/{node_id}/install")
def install_node(node_id: str, provisioner: NodeProvisioner = Depends(get_provisioner)):
    return provisioner.install(node_id).to_dict()


@router.post("/{node_id}/join")
def join_node(node_id: str, provisioner: NodeProvisioner = Depends(get_provisioner)):
    return provisioner.join(node_id).to_dict()


@router.post("/{node_id}/verify")
def verify_node(node_id: str, provisioner: NodeProvisioner = Depends(get_provisioner)):
    status, state = provisioner.verify(node_id)
    return {'node_id': node_id, 'state': state.value, **status.to_dict()}


@router.delete("/{node_id}")
def remove_node(node_id: str, provisioner: NodeProvisioner = Depends(get_provisioner)):
    return provisioner.remove(node_id)
