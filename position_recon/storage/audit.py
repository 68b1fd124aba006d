"""
Audit sink writing immutable JSON backups of records before cleanup.
"""
import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Sequence

from position_recon.exceptions import PersistenceError
from position_recon.monitoring.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _write_new(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # "x" refuses to overwrite an existing backup
    with open(path, "x") as f:
        json.dump(payload, f, indent=2, default=str)


class JsonFileAuditSink:
    """Writes one <label>.json file per snapshot under audit_dir."""

    def __init__(self, audit_dir: str | Path = "data/audit"):
        self.audit_dir = Path(audit_dir)

    def path_for(self, label: str) -> Path:
        return self.audit_dir / f"{_UNSAFE_CHARS.sub('_', label)}.json"

    async def snapshot(self, records: Sequence[Dict[str, Any]], label: str) -> None:
        path = self.path_for(label)
        payload = {
            "label": label,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "count": len(records),
            "records": list(records),
        }
        try:
            await asyncio.to_thread(_write_new, path, payload)
        except OSError as e:
            raise PersistenceError(f"Failed to write audit snapshot {path}: {e}") from e
        logger.info("Audit snapshot written", label=label, path=str(path), count=len(records))
