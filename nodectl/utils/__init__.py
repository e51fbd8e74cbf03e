"""Utility functions and helpers for nodectl."""
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from ..config import Config
from ..models import Hop, NodeRecord


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if v and any(
                redact_key.lower() in str(k).lower()
                for redact_key in Config.REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data


def to_plain(value: Any) -> Any:
    """Dataclasses and enums to JSON-friendly structures."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, '__dataclass_fields__'):
        return {k: to_plain(v) for k, v in asdict(value).items()}
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def record_to_dict(record: NodeRecord, redact: bool = True) -> Dict[str, Any]:
    data = to_plain(record)
    data['primary'] = record.is_primary
    return redact_sensitive_data(data) if redact else data


def parse_hops(raw: List[Dict[str, Any]]) -> List[Hop]:
    """Build hops from dicts with host/username/password/port keys."""
    hops = []
    for i, item in enumerate(raw or []):
        if 'host' not in item or not (item.get('username') or item.get('user')):
            raise ValueError(f"Hop {i} needs 'host' and 'username'")
        hops.append(Hop(
            host=str(item['host']),
            username=str(item.get('username') or item.get('user')),
            password=str(item.get('password', '') or ''),
            port=int(item.get('port', 22) or 22),
        ))
    if not hops:
        raise ValueError("At least one hop is required")
    return hops


def load_hops(path: Union[str, Path]) -> List[Hop]:
    """Read a hop chain from YAML, either a list or a mapping with a ``hops`` key."""
    with open(Path(path).expanduser(), 'r') as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get('hops', [])
    return parse_hops(data)
