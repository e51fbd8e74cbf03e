"""
Parsers for every text convention the remote scripts emit.

Probe sentinels, boolean flags, kubeadm join output, compose manifests and
docker listings all drift with the tools that produce them, so they are kept
together here and covered by fixture tests.
"""
import re
from typing import Dict, List, Optional, Tuple

from ..models import ContainerInfo

START_SENTINEL = "===START==="
END_SENTINEL = "===END==="

WATCH_COMPLETE = "WATCH_COMPLETE"
WATCH_TIMEOUT = "WATCH_TIMEOUT"
WATCH_EXITED = "WATCH_EXITED"

COMMAND_FAILED = "COMMAND_FAILED"
FILE_NOT_FOUND = "FILE_NOT_FOUND"
RUNTIME_NOT_FOUND = "DOCKER_NOT_FOUND"

MANIFEST_YML = "docker-compose.yml"
MANIFEST_YAML = "docker-compose.yaml"

WORKER_JOIN_BANNER = "Then you can join any number of worker nodes"
CONTROL_PLANE_JOIN_BANNER = "You can now join any number of the control-plane node"
JOIN_PREFIX = "kubeadm join"

CONTAINER_LISTING_FIELDS = 7

_FLAG = re.compile(r"\b([A-Z][A-Z0-9_]*)=(true|false)\b")
_HASH = re.compile(r"sha256:[a-f0-9]+")
_CANONICAL_JOIN = re.compile(
    r"(kubeadm join \S*:[0-9]* --token \S+ --discovery-token-ca-cert-hash sha256:[a-f0-9]+)"
)
_CERT_KEY = re.compile(r"--control-plane --certificate-key ([a-zA-Z0-9]+)")
# Things that leak into a join command when the log interleaves shell output.
_CONTAMINATION = (" + ", " && ", " ; ", " | ", "mkdir")
_STACK_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


# --- probes -----------------------------------------------------------------

def has_sentinels(output: str) -> bool:
    """True when both probe sentinels appear in the same response."""
    return START_SENTINEL in output and END_SENTINEL in output


def sentinel_body(output: str) -> Optional[str]:
    """Text between the sentinels, or None if either is missing."""
    if not has_sentinels(output):
        return None
    start = output.index(START_SENTINEL) + len(START_SENTINEL)
    end = output.find(END_SENTINEL, start)
    if end == -1:
        return None
    return output[start:end]


def parse_flags(output: str) -> Dict[str, bool]:
    """Extract ``NAME=true``/``NAME=false`` tokens."""
    return {name: value == 'true' for name, value in _FLAG.findall(output)}


def flag(flags: Dict[str, bool], name: str) -> bool:
    """A missing flag reads as false, never unknown."""
    return flags.get(name, False)


def parse_probe_output(output: str) -> Optional[Dict[str, bool]]:
    """Flags from a sentinel-bracketed probe, or None when the response is incomplete."""
    body = sentinel_body(output)
    if body is None:
        return None
    return parse_flags(body)


# --- transport failures -----------------------------------------------------

def classify_transport_failure(text: str) -> str:
    """Map a transport failure message to a coarse kind."""
    lowered = (text or '').lower()
    if 'timed out' in lowered or 'timeout' in lowered:
        return 'timeout'
    if any(marker in lowered for marker in (
        'connection refused', 'no such host', 'lookup', 'unreachable',
        'no valid connections', 'name or service not known', 'connection reset',
    )):
        return 'connection'
    if 'auth' in lowered:
        return 'authentication'
    return 'other'


# --- join secrets -----------------------------------------------------------

def normalize_whitespace(text: str) -> str:
    return ' '.join(text.replace('\\', ' ').split())


def clean_join_command(command: str) -> str:
    """Reduce a raw join command to its canonical form.

    The canonical ``kubeadm join host:port --token ... --discovery-token-ca-cert-hash
    sha256:...`` shape wins when present; otherwise the text is cut at the first
    contamination operator.
    """
    command = normalize_whitespace(command)
    if not command:
        return ''
    match = _CANONICAL_JOIN.search(command)
    if match:
        return match.group(1)
    cut = len(command)
    for operator in _CONTAMINATION:
        idx = command.find(operator)
        if idx > 0:
            cut = min(cut, idx)
    return command[:cut].strip()


def is_plausible_join_command(command: str) -> bool:
    """Contains the join prefix and a hash-like suffix."""
    return bool(command) and JOIN_PREFIX in command and bool(_HASH.search(command))


def _join_from_banner(log: str) -> str:
    lines = log.splitlines()
    for i, line in enumerate(lines):
        if WORKER_JOIN_BANNER not in line:
            continue
        window = lines[i + 1:i + 16]
        for j, candidate in enumerate(window):
            if JOIN_PREFIX not in candidate:
                continue
            block = []
            for part in window[j:j + 4]:
                if not part.strip():
                    break
                if 'You can now join' in part:
                    continue
                block.append(part)
            return normalize_whitespace(' '.join(block))
    return ''


def _join_from_last_line(log: str) -> str:
    lines = log.splitlines()
    for i in range(len(lines) - 1, -1, -1):
        line = lines[i]
        if JOIN_PREFIX in line and 'control-plane' not in line:
            return normalize_whitespace(' '.join(lines[i:i + 2]))
    return ''


def _join_from_file(contents: str) -> str:
    return normalize_whitespace(contents or '')


def _join_from_line_slice(log: str) -> str:
    """Follow backslash continuations from the first join line."""
    lines = log.splitlines()
    for i, line in enumerate(lines):
        if JOIN_PREFIX not in line:
            continue
        block = [line]
        k = i
        while block[-1].rstrip().endswith('\\') and k + 1 < len(lines):
            k += 1
            if 'control-plane' in lines[k]:
                break
            block.append(lines[k])
        return normalize_whitespace(' '.join(block))
    return ''


def join_command_candidates(log: str, join_file: str = '') -> List[Tuple[str, str]]:
    """Every extraction pattern, in priority order, as (name, raw result) pairs."""
    return [
        ('banner_block', _join_from_banner(log)),
        ('last_join_line', _join_from_last_line(log)),
        ('join_file', _join_from_file(join_file)),
        ('line_slice', _join_from_line_slice(log)),
    ]


def extract_join_command(log: str, join_file: str = '') -> str:
    """First plausible join command across the ordered patterns, or ''."""
    for _, raw in join_command_candidates(log, join_file):
        cleaned = clean_join_command(raw)
        if is_plausible_join_command(cleaned):
            return cleaned
    return ''


def extract_certificate_key(log: str) -> str:
    """Certificate key following the control-plane banner, else anywhere in the log."""
    lines = log.splitlines()
    for i, line in enumerate(lines):
        if CONTROL_PLANE_JOIN_BANNER in line:
            match = _CERT_KEY.search(' '.join(lines[i:i + 11]))
            if match:
                return match.group(1)
    match = _CERT_KEY.search(log)
    return match.group(1) if match else ''


def with_node_name(join_command: str, node_name: str) -> str:
    """Append ``--node-name`` unless the command already carries one."""
    if '--node-name' in join_command:
        return join_command
    return f"{join_command} --node-name={node_name}"


def parse_watch_output(output: str) -> Optional[str]:
    """'complete', 'timeout' or 'exited' (script ended without the marker); None if unreadable."""
    if WATCH_COMPLETE in output:
        return 'complete'
    if WATCH_TIMEOUT in output:
        return 'timeout'
    if WATCH_EXITED in output:
        return 'exited'
    return None


def tail(text: str, lines: int = 20) -> str:
    return '\n'.join(text.splitlines()[-lines:])


# --- containers -------------------------------------------------------------

def validate_stack_name(stack: str) -> str:
    if not stack or not _STACK_NAME.match(stack):
        raise ValueError(f"Invalid stack name: {stack!r}")
    return stack


def parse_manifest_probe(output: str) -> Optional[str]:
    """Manifest file name reported by the discovery probe, or None."""
    if 'YML_EXISTS' in output:
        return MANIFEST_YML
    if 'YAML_EXISTS' in output:
        return MANIFEST_YAML
    return None


def extract_container_names(manifest: str) -> List[str]:
    """``container_name:`` values declared in a compose manifest, in order."""
    names = []
    for line in manifest.splitlines():
        stripped = line.strip()
        if not stripped.startswith('container_name:'):
            continue
        value = stripped[len('container_name:'):].split('#', 1)[0].strip().strip('"\'')
        if value and value not in names:
            names.append(value)
    return names


def parse_container_listing(output: str) -> List[ContainerInfo]:
    """Rows of a tab-separated ``docker ps`` listing."""
    containers = []
    for line in output.splitlines():
        fields = line.split('\t')
        if len(fields) < CONTAINER_LISTING_FIELDS:
            continue
        containers.append(ContainerInfo(
            id=fields[0].strip(),
            image=fields[1].strip(),
            status=fields[2].strip(),
            name=fields[3].strip(),
            ports=fields[4].strip(),
            size=fields[5].strip(),
            created=fields[6].strip(),
        ))
    return containers


def container_names(output: str) -> List[str]:
    return [c.name for c in parse_container_listing(output)]


def parse_runtime_probe(version_output: str, count_output: str) -> Tuple[Optional[str], int]:
    """(version line or None, number of existing containers)."""
    version = None
    for line in version_output.splitlines():
        if 'Docker version' in line:
            version = line.strip()
            break
    try:
        count = int(count_output.strip().splitlines()[-1]) if count_output.strip() else 0
    except ValueError:
        count = 0
    return version, count


def has_failure_sentinel(output: str) -> bool:
    return COMMAND_FAILED in output


def has_error_text(output: str) -> bool:
    return any(token in output for token in ('error', 'Error', 'ERROR'))


# --- etcd -------------------------------------------------------------------

def parse_etcd_member_id(output: str, member_name: str) -> Optional[str]:
    """Member id from ``etcdctl member list`` (comma separated) for the given name."""
    for line in output.splitlines():
        fields = [f.strip() for f in line.split(',')]
        if len(fields) >= 3 and fields[2] == member_name and re.fullmatch(r"[0-9a-f]+", fields[0]):
            return fields[0]
    return None
