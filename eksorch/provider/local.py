"""Provisioning API simulator persisted to a JSON state file.

Lets repeated CLI runs converge idempotently: a second ``apply`` with the
same document reads back what the first one created and does nothing.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from eksorch.observability.logging import get_logger
from eksorch.provider.memory import InMemoryProvisioningAPI

_log = get_logger("provider.local")


class LocalStateProvisioningAPI(InMemoryProvisioningAPI):
    """InMemoryProvisioningAPI whose state survives the process.

    The snapshot is serialised on the event loop, so it is consistent with
    the call that changed it; the file write runs in a worker thread.
    Writes are serialised by a lock and land in call order.
    """

    def __init__(self, path: str | Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._path = Path(path)
        self._write_lock = asyncio.Lock()
        if self._path.exists():
            self.restore(json.loads(self._path.read_text()))
            _log.debug("state_loaded", path=str(self._path), resources=len(self.resource_ids()))

    async def _changed(self) -> None:
        payload = json.dumps(self.snapshot(), indent=2, sort_keys=True)
        async with self._write_lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write, payload)

    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(payload)
        tmp.replace(self._path)
