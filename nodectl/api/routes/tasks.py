from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from nodectl.api.deps import get_provisioner
from nodectl.modules.provisioning import NodeProvisioner
from nodectl.utils import redact_sensitive_data

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("")
def list_tasks(node_id: Optional[str] = None, provisioner: NodeProvisioner = Depends(get_provisioner)):
    return [redact_sensitive_data(t.to_dict()) for t in provisioner.tasks.list(node_id)]


@router.get("/{task_id}")
def get_task(task_id: str, provisioner: NodeProvisioner = Depends(get_provisioner)):
    record = provisioner.task_status(task_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return redact_sensitive_data(record.to_dict())
