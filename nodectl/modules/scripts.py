"""
Remote command builders.

Every function returns the exact shell text sent to a host; nothing here
touches the network.
"""
import shlex
from typing import List, Optional

from ..models import NodeType
from .parsing import (
    START_SENTINEL, END_SENTINEL, WATCH_COMPLETE, WATCH_TIMEOUT, WATCH_EXITED,
    COMMAND_FAILED, FILE_NOT_FOUND, RUNTIME_NOT_FOUND, MANIFEST_YML, MANIFEST_YAML,
)

HAPROXY_CFG = "/etc/haproxy/haproxy.cfg"
HAPROXY_BACKEND = "kubernetes-backend"
LB_PORT = 6444
API_SERVER_PORT = 6443

LB_INSTALL_LOG = "/tmp/haproxy_install.log"
LB_INSTALL_MARKER = "LOAD BALANCER INSTALL COMPLETE"

INSTALL_SCRIPT = "/tmp/install_k8s.sh"
INSTALL_LOG = "/tmp/k8s_install.log"
INSTALL_PID = "/tmp/k8s_install.pid"
INSTALL_MARKER = "KUBERNETES INSTALL COMPLETE"

JOIN_SCRIPT = "/tmp/join_k8s.sh"
JOIN_LOG = "/tmp/k8s_join.log"
JOIN_PID = "/tmp/k8s_join.pid"
CONTROL_PLANE_JOIN_MARKER = "CONTROL PLANE JOIN COMPLETE"
WORKER_JOIN_MARKER = "WORKER JOIN COMPLETE"

JOIN_COMMAND_FILE = "/tmp/k8s_join_command.txt"
BACKEND_SCRIPT = "/tmp/update_haproxy.sh"

DEFAULT_POD_CIDR = "10.10.0.0/16"

ETCDCTL = (
    "ETCDCTL_API=3 etcdctl --endpoints=localhost:2379 "
    "--cacert=/etc/kubernetes/pki/etcd/ca.crt "
    "--cert=/etc/kubernetes/pki/etcd/server.crt "
    "--key=/etc/kubernetes/pki/etcd/server.key"
)

CONTAINER_FORMAT = "{{.ID}}\\t{{.Image}}\\t{{.Status}}\\t{{.Names}}\\t{{.Ports}}\\t{{.Size}}\\t{{.CreatedAt}}"


def sudo(command: str, password: str) -> str:
    """Pipe the credential into sudo's prompt."""
    return f"echo {shlex.quote(password)} | sudo -S {command}"


def write_file(path: str, body: str, delimiter: str = "EOL") -> str:
    """Heredoc that writes ``body`` verbatim to ``path``."""
    return f"cat > {path} << '{delimiter}'\n{body}\n{delimiter}"


def run_script_in_background(script: str, log: str, pid: str, password: str) -> str:
    """Detach a script, sending all output to ``log`` and its PID to ``pid``."""
    return f"{sudo(f'bash {script}', password)} > {log} 2>&1 & echo $! > {pid}"


# --- probes -----------------------------------------------------------------

def probe_command(node_type: NodeType) -> str:
    """Sentinel-bracketed status probe for a node type."""
    if node_type == NodeType.LOAD_BALANCER:
        checks = [
            "if dpkg -l | grep -q haproxy; then echo 'INSTALLED=true'; else echo 'INSTALLED=false'; fi",
            "if systemctl status haproxy 2>/dev/null | grep -q 'Active: active (running)'; "
            "then echo 'RUNNING=true'; else echo 'RUNNING=false'; fi",
        ]
    else:
        checks = [
            "if command -v kubectl >/dev/null 2>&1 && command -v kubelet >/dev/null 2>&1; "
            "then echo 'INSTALLED=true'; else echo 'INSTALLED=false'; fi",
            "if systemctl status kubelet 2>/dev/null | grep -q 'Active: active (running)'; "
            "then echo 'KUBELET_RUNNING=true'; else echo 'KUBELET_RUNNING=false'; fi",
            "if kubectl get nodes --no-headers 2>/dev/null | grep -w \"$(hostname)\" | grep -Eq 'control-plane|master'; "
            "then echo 'IS_MASTER=true'; else echo 'IS_MASTER=false'; fi",
            "if kubectl get nodes --no-headers 2>/dev/null | grep -w \"$(hostname)\" | grep -Evq 'control-plane|master'; "
            "then echo 'IS_WORKER=true'; else echo 'IS_WORKER=false'; fi",
            "if kubectl get nodes --no-headers 2>/dev/null | grep -qw \"$(hostname)\"; "
            "then echo 'NODE_REGISTERED=true'; else echo 'NODE_REGISTERED=false'; fi",
        ]
    return "; ".join([f"echo '{START_SENTINEL}'"] + checks + [f"echo '{END_SENTINEL}'"])


# --- load balancer ----------------------------------------------------------

def haproxy_config() -> str:
    return f"""global
    log /dev/log    local0
    log /dev/log    local1 notice
    daemon

defaults
    log     global
    mode    tcp
    option  tcplog
    option  dontlognull
    timeout connect 5000
    timeout client  50000
    timeout server  50000

frontend kubernetes-frontend
    bind *:{LB_PORT}
    mode tcp
    option tcplog
    default_backend {HAPROXY_BACKEND}

backend {HAPROXY_BACKEND}
    mode tcp
    balance roundrobin
    option tcp-check"""


def lb_install_commands(password: str) -> List[str]:
    return [
        f"{sudo('apt-get update', password)} > {LB_INSTALL_LOG} 2>&1",
        f"{sudo('DEBIAN_FRONTEND=noninteractive apt-get install -y haproxy', password)} >> {LB_INSTALL_LOG} 2>&1",
        write_file("/tmp/haproxy.cfg.new", haproxy_config(), delimiter="HAPROXY_CFG"),
        f"{sudo(f'cp {HAPROXY_CFG} {HAPROXY_CFG}.bak', password)} >> {LB_INSTALL_LOG} 2>&1 || true",
        f"{sudo(f'cp /tmp/haproxy.cfg.new {HAPROXY_CFG}', password)} >> {LB_INSTALL_LOG} 2>&1",
        "rm -f /tmp/haproxy.cfg.new",
        f"{sudo('systemctl enable haproxy', password)} >> {LB_INSTALL_LOG} 2>&1 || true",
        f"({sudo('systemctl restart haproxy', password)} || {sudo('service haproxy restart', password)}) >> {LB_INSTALL_LOG} 2>&1",
        f"echo '{LB_INSTALL_MARKER}' >> {LB_INSTALL_LOG}",
    ]


def lb_uninstall_commands(password: str) -> List[str]:
    return [
        f"{sudo('systemctl stop haproxy', password)} 2>/dev/null || true",
        f"{sudo('DEBIAN_FRONTEND=noninteractive apt-get purge -y haproxy', password)} || true",
        f"{sudo('rm -rf /etc/haproxy', password)} || true",
    ]


def _backend_script(body: str) -> str:
    return f"""#!/bin/bash
set -e
CFG={HAPROXY_CFG}
BACKUP="$CFG.bak_$(date +%Y%m%d%H%M%S)"
cp "$CFG" "$BACKUP"

# frontend sections never carry server lines
sed -i '/^frontend/,/^backend/ {{/server/d}}' "$CFG"

{body}

if ! haproxy -c -f "$CFG"; then
    echo 'VALIDATION_FAILED'
    cp "$BACKUP" "$CFG"
    exit 1
fi

if ! systemctl restart haproxy && ! service haproxy restart; then
    echo 'RESTART_FAILED'
    cp "$BACKUP" "$CFG"
    exit 1
fi
echo 'RECONCILED'"""


def backend_add_script(name: str, address: str, port: int = API_SERVER_PORT) -> str:
    line = f"server {name} {address}:{port} check"
    body = f"""if grep -q '^[[:space:]]*{line}$' "$CFG"; then
    echo 'BACKEND_EXISTS'
else
    sed -i '/^[[:space:]]*server {name} /d' "$CFG"
    backend_line=$(grep -n '^backend {HAPROXY_BACKEND}' "$CFG" | cut -d: -f1)
    if [ -z "$backend_line" ]; then
        echo 'BACKEND_SECTION_MISSING'
        cp "$BACKUP" "$CFG"
        exit 1
    fi
    sed -i "${{backend_line}}a\\    {line}" "$CFG"
    echo 'BACKEND_ADDED'
fi"""
    return _backend_script(body)


def backend_remove_script(name: str) -> str:
    body = f"""if grep -q '^[[:space:]]*server {name} ' "$CFG"; then
    sed -i '/^[[:space:]]*server {name} /d' "$CFG"
    echo 'BACKEND_REMOVED'
else
    echo 'BACKEND_ABSENT'
fi"""
    return _backend_script(body)


def backend_script_commands(script: str, password: str) -> List[str]:
    return [
        write_file(BACKEND_SCRIPT, script),
        f"chmod +x {BACKEND_SCRIPT}",
        f"{sudo(BACKEND_SCRIPT, password)} 2>&1",
        f"rm -f {BACKEND_SCRIPT}",
    ]


# --- control plane / worker ---------------------------------------------------

_PREPARE_NODE = """# detect the node address
local_ip=$(ip -4 addr show | awk '/inet / && $2 ~ /^192/ {print $2}' | cut -d/ -f1 | head -n 1)
if [ -z "$local_ip" ]; then
  local_ip=$(hostname -I | awk '{print $1}')
fi
echo "node ip: $local_ip"

swapoff -a
sed -i '/ swap / s/^/#/' /etc/fstab

cat > /etc/modules-load.d/k8s.conf << 'MODULES'
overlay
br_netfilter
MODULES
modprobe overlay
modprobe br_netfilter

cat > /etc/sysctl.d/k8s.conf << 'SYSCTL'
net.bridge.bridge-nf-call-iptables  = 1
net.bridge.bridge-nf-call-ip6tables = 1
net.ipv4.ip_forward                 = 1
SYSCTL
sysctl --system

apt-get update -y
apt-get install -y apt-transport-https ca-certificates curl gpg containerd
mkdir -p /etc/containerd
containerd config default > /etc/containerd/config.toml
sed -i 's/SystemdCgroup = false/SystemdCgroup = true/' /etc/containerd/config.toml
systemctl restart containerd
systemctl enable containerd

mkdir -p /etc/apt/keyrings
curl -fsSL https://pkgs.k8s.io/core:/stable:/v1.30/deb/Release.key | gpg --dearmor --yes -o /etc/apt/keyrings/kubernetes-apt-keyring.gpg
echo 'deb [signed-by=/etc/apt/keyrings/kubernetes-apt-keyring.gpg] https://pkgs.k8s.io/core:/stable:/v1.30/deb/ /' > /etc/apt/sources.list.d/kubernetes.list
apt-get update -y
apt-get install -y kubelet kubeadm kubectl
apt-mark hold kubelet kubeadm kubectl
echo "KUBELET_EXTRA_ARGS=--node-ip=$local_ip" > /etc/default/kubelet
systemctl enable kubelet
kubeadm config images pull"""

_KUBECONFIG = """USER_HOME=$(eval echo ~${SUDO_USER:-root})
mkdir -p $USER_HOME/.kube
cp -f /etc/kubernetes/admin.conf $USER_HOME/.kube/config
chown $(id -u ${SUDO_USER:-root}):$(id -g ${SUDO_USER:-root}) $USER_HOME/.kube/config
export KUBECONFIG=/etc/kubernetes/admin.conf"""


def control_plane_install_script(name: str, lb_address: str, pod_cidr: str = DEFAULT_POD_CIDR) -> str:
    return f"""#!/bin/bash
set -euxo pipefail
SERVER_NAME={shlex.quote(name)}

{_PREPARE_NODE}

kubeadm init --pod-network-cidr={pod_cidr} --node-name "$SERVER_NAME" \\
  --control-plane-endpoint "{lb_address}:{LB_PORT}" --upload-certs

{_KUBECONFIG}

kubectl taint nodes --all node-role.kubernetes.io/control-plane- || true
sleep 30
kubectl apply -f https://raw.githubusercontent.com/projectcalico/calico/v3.25.0/manifests/calico.yaml

kubeadm token create --print-join-command > {JOIN_COMMAND_FILE} || true
echo "{INSTALL_MARKER}"
"""


def control_plane_join_script(name: str, join_command: str, certificate_key: str) -> str:
    return f"""#!/bin/bash
set -euxo pipefail
SERVER_NAME={shlex.quote(name)}

{_PREPARE_NODE}

{join_command} --control-plane --certificate-key {certificate_key} --node-name "$SERVER_NAME" --apiserver-advertise-address "$local_ip"

{_KUBECONFIG}

echo "{CONTROL_PLANE_JOIN_MARKER}"
"""


def worker_join_script(name: str, join_command: str) -> str:
    return f"""#!/bin/bash
set -euxo pipefail
SERVER_NAME={shlex.quote(name)}

{_PREPARE_NODE}

{join_command}

echo "{WORKER_JOIN_MARKER}"
"""


def launch_commands(script_path: str, script: str, log: str, pid: str, password: str) -> List[str]:
    """Write a script and start it detached."""
    return [
        write_file(script_path, script),
        f"chmod +x {script_path}",
        run_script_in_background(script_path, log, pid, password),
        f"echo \"started: log={log} pid=$(cat {pid})\"",
    ]


def watch_command(log: str, marker: str, ceiling: int, interval: int, pid: Optional[str] = None) -> str:
    """Block on the remote side until ``marker`` shows up in ``log``.

    When ``pid`` is given the loop also stops once that process has exited.
    """
    exited = f"if [ -f {pid} ] && [ ! -d /proc/$(cat {pid}) ]; then break; fi; " if pid else ""
    loop = (
        f"while ! grep -q {shlex.quote(marker)} {log} 2>/dev/null; do {exited}sleep {interval}; done; "
        f"grep -q {shlex.quote(marker)} {log} 2>/dev/null"
    )
    return (
        f"timeout {ceiling} bash -c {shlex.quote(loop)}; rc=$?; "
        f"if [ $rc -eq 0 ]; then echo '{WATCH_COMPLETE}'; "
        f"elif [ $rc -eq 124 ]; then echo '{WATCH_TIMEOUT}'; "
        f"else echo '{WATCH_EXITED}'; fi"
    )


def read_artifacts_commands(log: str) -> List[str]:
    return [
        f"cat {log} 2>/dev/null || true",
        f"cat {JOIN_COMMAND_FILE} 2>/dev/null || true",
    ]


def drain_commands(node_name: str, password: str) -> List[str]:
    """Run on the primary: cordon, drain and delete ``node_name``."""
    name = shlex.quote(node_name)
    return [
        sudo(f"kubectl --kubeconfig=/etc/kubernetes/admin.conf cordon {name}", password) + " || true",
        sudo(f"kubectl --kubeconfig=/etc/kubernetes/admin.conf drain {name} "
             "--ignore-daemonsets --delete-emptydir-data --force --timeout=300s", password) + " || true",
        sudo(f"kubectl --kubeconfig=/etc/kubernetes/admin.conf delete node {name}", password) + " || true",
    ]


def etcd_member_list_command(password: str) -> str:
    return sudo(f"{ETCDCTL} member list", password) + " 2>/dev/null || true"


def etcd_member_remove_command(member_id: str, password: str) -> str:
    return sudo(f"{ETCDCTL} member remove {member_id}", password)


def node_cleanup_commands(password: str) -> List[str]:
    """Reset kubeadm state and purge kubernetes packages; every step tolerates failure."""
    steps = [
        "kubeadm reset -f",
        "systemctl stop kubelet",
        "systemctl stop containerd",
        "rm -rf /etc/cni/net.d",
        "iptables -F",
        "iptables -t nat -F",
        "iptables -t mangle -F",
        "iptables -X",
        "ipvsadm --clear",
        "rm -rf /root/.kube /etc/kubernetes /var/lib/kubelet /var/lib/etcd /opt/cni",
        "systemctl disable kubelet",
        "apt-mark unhold kubelet kubeadm kubectl",
        "DEBIAN_FRONTEND=noninteractive apt-get purge -y --allow-change-held-packages kubeadm kubectl kubelet kubernetes-cni",
        "DEBIAN_FRONTEND=noninteractive apt-get autoremove -y",
    ]
    commands = [f"{sudo(step, password)} 2>&1 || true" for step in steps]
    commands.append("rm -rf ~/.kube")
    commands.append("echo 'NODE CLEANUP COMPLETE'")
    return commands


# --- containers -------------------------------------------------------------

def runtime_probe_commands() -> List[str]:
    return [
        f"docker --version 2>/dev/null || echo '{RUNTIME_NOT_FOUND}'",
        "docker ps -a -q 2>/dev/null | wc -l",
    ]


def runtime_install_commands(password: str) -> List[str]:
    return [
        sudo("apt-get update -y", password),
        sudo("DEBIAN_FRONTEND=noninteractive apt-get install -y ca-certificates curl", password),
        "curl -fsSL https://get.docker.com -o /tmp/get-docker.sh",
        sudo("sh /tmp/get-docker.sh", password),
        sudo("DEBIAN_FRONTEND=noninteractive apt-get install -y docker-compose", password) + " || true",
        sudo("usermod -aG docker $USER", password) + " || true",
        sudo("systemctl enable --now docker", password),
        "rm -f /tmp/get-docker.sh",
        "docker --version",
    ]


def container_list_command(project: Optional[str] = None, password: Optional[str] = None) -> str:
    command = f"docker ps -a --format '{CONTAINER_FORMAT}'"
    if project:
        command += f" --filter {shlex.quote(f'label=com.docker.compose.project={project}')}"
    if password:
        command = sudo(command, password)
    return command + " 2>/dev/null || true"


def clone_command(repo_url: str, workdir: str) -> str:
    return f"rm -rf {workdir} && git clone --depth 1 {shlex.quote(repo_url)} {workdir} 2>&1"


def manifest_probe_command(workdir: str) -> str:
    return (
        f"if [ -f {workdir}/{MANIFEST_YML} ]; then echo 'YML_EXISTS'; "
        f"elif [ -f {workdir}/{MANIFEST_YAML} ]; then echo 'YAML_EXISTS'; "
        f"else echo 'ERROR: no compose manifest in {workdir}'; fi"
    )


def read_manifest_command(workdir: str, manifest: str) -> str:
    return f"cat {workdir}/{manifest}"


def compose_down_command(workdir: str, project: str, manifest: str, password: str) -> str:
    return (
        f"cd {workdir} && [ -f {manifest} ] && "
        f"{sudo(f'docker-compose -p {project} -f {manifest} down -v --remove-orphans', password)} 2>&1 "
        f"|| echo '{FILE_NOT_FOUND}'"
    )


def stop_remove_commands(container: str, password: str) -> List[str]:
    name = shlex.quote(container)
    return [
        f"{sudo(f'docker stop {name}', password)} 2>&1 || echo '{COMMAND_FAILED}'",
        f"{sudo(f'docker rm -f {name}', password)} 2>&1 || echo '{COMMAND_FAILED}'",
    ]


def remove_workdir_command(workdir: str) -> str:
    return f"rm -rf {workdir}"
