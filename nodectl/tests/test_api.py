import pytest
from fastapi.testclient import TestClient

from nodectl.api import deps
from nodectl.api.main import app
from nodectl.config import Config
from nodectl.errors import TransportError
from nodectl.modules.backend import BackendReconciler
from nodectl.modules.leases import LeaseManager
from nodectl.modules.persistence import InMemoryNodeStore
from nodectl.modules.provisioning import NodeProvisioner
from nodectl.modules.tasks import TaskRunner
from nodectl.modules.teardown import TeardownReconciler

from nodectl.tests.conftest import fixture_text

HEADERS = {"X-API-Key": Config.API_KEY}
HOPS = [{"host": "bastion.example.com", "username": "jump", "password": "jumppw"},
        {"host": "10.0.0.5", "username": "ubuntu", "password": "lbpw"}]


@pytest.fixture
def provisioner(executor, sleeps):
    leases = LeaseManager(ttl=30, wait=1)
    tasks = TaskRunner(max_workers=2)
    provisioner = NodeProvisioner(InMemoryNodeStore(), executor=executor, leases=leases, tasks=tasks,
                                  backend=BackendReconciler(executor, leases))
    yield provisioner
    tasks.shutdown()


@pytest.fixture
def client(executor, provisioner):
    app.dependency_overrides[deps.get_executor] = lambda: executor
    app.dependency_overrides[deps.get_provisioner] = lambda: provisioner
    app.dependency_overrides[deps.get_backend] = lambda: provisioner.backend
    app.dependency_overrides[deps.get_teardown] = lambda: TeardownReconciler(executor)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client, node_id="lb", node_type="load_balancer", hops=HOPS):
    return client.post("/nodes", headers=HEADERS, json={
        "id": node_id, "infra_id": "infra-1", "name": node_id, "type": node_type, "hops": hops,
    })


def test_requests_without_key_are_rejected(client):
    assert client.get("/nodes/lb").status_code == 403
    assert client.get("/nodes/lb", headers={"X-API-Key": "wrong"}).status_code == 403


def test_register_and_fetch_hides_passwords(client):
    response = _register(client)
    assert response.status_code == 201
    body = client.get("/nodes/lb", headers=HEADERS).json()
    assert body["type"] == "load_balancer"
    assert body["role"] is None
    assert body["hops"][1]["password"] == "[REDACTED]"
    assert body["version"] == 1


def test_unknown_node_is_404(client):
    response = client.get("/nodes/missing", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["error"] == "NodeNotFound"


def test_register_requires_a_hop(client):
    assert _register(client, hops=[]).status_code == 422


def test_precondition_is_409(client, transport):
    _register(client, "w1", "worker")
    response = client.post("/nodes/w1/install", headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["error"] == "PreconditionFailure"
    assert transport.commands == []


def test_verify_reports_state(client, transport):
    _register(client)
    transport.on("===START===", stdout="===START===\nINSTALLED=true\nRUNNING=false\n===END===")
    body = client.post("/nodes/lb/verify", headers=HEADERS).json()
    assert body["state"] == "installed_stopped"
    assert body["installed"] is True and body["running"] is False


def test_transport_error_is_502(client, transport):
    transport.open_error = TransportError('authentication', "Authentication failed.", host="10.0.0.5")
    response = client.post("/containers/list", headers=HEADERS, json={"hops": HOPS})
    assert response.status_code == 502
    assert response.json()["kind"] == "authentication"


def test_container_listing(client, transport):
    transport.on("docker ps -a --format", stdout=fixture_text("docker_ps.txt"))
    body = client.post("/containers/list", headers=HEADERS, json={"hops": HOPS, "project": "shop"}).json()
    assert body["count"] == 3
    assert body["containers"][0]["name"] == "shop-web"


def test_incomplete_teardown_is_500_with_report(client, transport):
    listing = fixture_text("docker_ps.txt")
    transport.on("docker ps -a --format", stdout=listing)
    transport.on("YML_EXISTS", stdout="YML_EXISTS")
    transport.on("cat /srv/shop/docker-compose.yml", stdout=fixture_text("docker-compose.yml"))
    response = client.post("/containers/teardown", headers=HEADERS,
                           json={"hops": HOPS, "stack": "shop", "workdir": "/srv/shop"})
    assert response.status_code == 500
    report = response.json()["report"]
    assert report["remaining"] == ["shop-web", "shop-db"]


def test_invalid_backend_name_is_400(client, transport):
    response = client.post("/backends", headers=HEADERS,
                           json={"hops": HOPS, "name": "cp 2", "address": "10.0.0.12"})
    assert response.status_code == 400
    assert transport.commands == []


def test_backend_add(client, transport):
    transport.on("sudo -S /tmp/update_haproxy.sh", stdout="BACKEND_EXISTS\nRECONCILED\n")
    response = client.post("/backends", headers=HEADERS,
                           json={"hops": HOPS, "name": "cp-2", "address": "10.0.0.12"})
    assert response.status_code == 200
    assert response.json() == {"name": "cp-2", "outcome": "BACKEND_EXISTS"}


def test_unknown_task_is_404(client):
    assert client.get("/tasks/nope", headers=HEADERS).status_code == 404
