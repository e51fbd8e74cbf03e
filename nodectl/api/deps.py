"""Shared orchestration objects for the HTTP layer."""
from functools import lru_cache

from nodectl.modules.backend import BackendReconciler
from nodectl.modules.executor import RemoteExecutor
from nodectl.modules.leases import LeaseManager
from nodectl.modules.persistence import InMemoryNodeStore
from nodectl.modules.provisioning import NodeProvisioner
from nodectl.modules.teardown import TeardownReconciler


@lru_cache()
def get_executor() -> RemoteExecutor:
    return RemoteExecutor()


@lru_cache()
def get_provisioner() -> NodeProvisioner:
    executor = get_executor()
    leases = LeaseManager()
    return NodeProvisioner(
        store=InMemoryNodeStore(),
        executor=executor,
        leases=leases,
        backend=BackendReconciler(executor, leases),
    )


def get_backend() -> BackendReconciler:
    return get_provisioner().backend


def get_teardown() -> TeardownReconciler:
    return TeardownReconciler(get_executor())
