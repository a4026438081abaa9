"""
Deployment-Tracking Table.

Remembers the paired deployment name last derived for each Emitter so it can
still be found after the Emitter is gone. Process-lifetime only.
"""

import asyncio
from typing import Dict, Optional

from models import ObjectKey


class DeploymentTracker:
    """In-memory Emitter -> deployment name map guarded by an asyncio lock."""

    def __init__(self):
        self._deployments: Dict[ObjectKey, str] = {}
        self._lock = asyncio.Lock()

    async def record(self, key: ObjectKey, deployment_name: str) -> None:
        async with self._lock:
            self._deployments[key] = deployment_name

    async def lookup(self, key: ObjectKey) -> Optional[str]:
        async with self._lock:
            return self._deployments.get(key)

    async def forget(self, key: ObjectKey) -> Optional[str]:
        """Drop an entry, returning the name it held."""
        async with self._lock:
            return self._deployments.pop(key, None)

    async def snapshot(self) -> Dict[ObjectKey, str]:
        """Return a copy of the table."""
        async with self._lock:
            return dict(self._deployments)
