"""Host runtime detection.

The same client runs either as a standalone script or as a scheduled task
inside a Qinglong panel.  The probe is evaluated once per process and the
result selects the transport and credential backends.
"""

from __future__ import annotations

import enum
import functools
import os
from collections.abc import Mapping
from pathlib import Path

_QINGLONG_ROOT = Path("/ql")


class HostRuntime(enum.Enum):
    """Host environment the client runs in."""

    STANDALONE = "standalone"
    QINGLONG = "qinglong"


def probe_runtime(env: Mapping[str, str], *, qinglong_root: Path = _QINGLONG_ROOT) -> HostRuntime:
    """Classify the host from its environment variables and filesystem."""
    if env.get("QL_DIR") or env.get("QL_BRANCH") or qinglong_root.exists():
        return HostRuntime.QINGLONG
    return HostRuntime.STANDALONE


@functools.cache
def detect_runtime() -> HostRuntime:
    """Return the current host runtime (probed once per process)."""
    return probe_runtime(os.environ)
