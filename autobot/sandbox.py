"""
AUTOBOT Sandbox Paths

Gate commands may run inside a container that mounts the host's work
directory somewhere else. The translator rewrites host paths into the
sandbox's view of the same files.
"""

from __future__ import annotations

import os

DEFAULT_HOST_ROOT = "/home/lanath/Work"


class PathTranslator:
    """Maps a host filesystem path to the path seen inside the sandbox."""

    def __init__(self, host_root: str = DEFAULT_HOST_ROOT, sandbox_root: str | None = None):
        self.host_root = host_root.rstrip("/") or "/"
        self.sandbox_root = sandbox_root.rstrip("/") if sandbox_root else None

    @classmethod
    def from_env(cls) -> "PathTranslator":
        return cls(
            host_root=os.environ.get("AUTOBOT_HOST_ROOT", DEFAULT_HOST_ROOT),
            sandbox_root=os.environ.get("WORKSPACE_ROOT") or None,
        )

    def translate(self, host_path: str) -> str:
        # No sandbox root means we are running on the host itself.
        if not self.sandbox_root:
            return host_path

        path = str(host_path)
        if path == self.host_root:
            return self.sandbox_root
        if path.startswith(self.host_root + "/"):
            return self.sandbox_root + path[len(self.host_root):]
        return path
