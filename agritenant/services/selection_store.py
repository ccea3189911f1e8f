"""
Persisted tenant selection

Remembers the last tenant each user switched to so the choice survives a
reload. The file store keeps a small JSON document keyed by user id.
"""

import json
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

import structlog

logger = structlog.get_logger(__name__)


class TenantSelectionStore(Protocol):
    def get(self, user_id: str) -> Optional[str]:
        ...

    def set(self, user_id: str, tenant_id: str) -> None:
        ...

    def clear(self, user_id: str) -> None:
        ...


class MemorySelectionStore:
    """Selection store that lives as long as the process"""

    def __init__(self):
        self._selected: Dict[str, str] = {}

    def get(self, user_id: str) -> Optional[str]:
        return self._selected.get(user_id)

    def set(self, user_id: str, tenant_id: str) -> None:
        self._selected[user_id] = tenant_id

    def clear(self, user_id: str) -> None:
        self._selected.pop(user_id, None)


class FileSelectionStore:
    """Selection store backed by a JSON file"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable tenant selection file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, user_id: str) -> Optional[str]:
        return self._load().get(user_id)

    def set(self, user_id: str, tenant_id: str) -> None:
        data = self._load()
        data[user_id] = tenant_id
        self._save(data)

    def clear(self, user_id: str) -> None:
        data = self._load()
        if data.pop(user_id, None) is not None:
            self._save(data)
