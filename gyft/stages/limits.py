"""Resource limits for worker processes.

`apply_resource_limits` is passed as `preexec_fn` and runs in the worker
child between fork and exec. The stage timeout is the primary guard; the
rlimits only bound a scraper that burns CPU or memory between two reads.

Each limit can be overridden through the environment:

    GYFT_RLIMIT_AS_BYTES     address space, default 2 GiB; 0 disables it
                             (headless browsers reserve a lot of virtual memory)
    GYFT_RLIMIT_CPU_SECONDS  CPU time, default 300; 0 keeps the default

Windows has no `resource` module; the function does nothing there.
"""

import logging
import os
import sys
from typing import NamedTuple

logger = logging.getLogger(__name__)


class _Limit(NamedTuple):
    resource_name: str
    env_var: str
    default: int
    zero_disables: bool


WORKER_LIMITS = (
    _Limit("RLIMIT_AS", "GYFT_RLIMIT_AS_BYTES", 2 * 1024**3, zero_disables=True),
    _Limit("RLIMIT_CPU", "GYFT_RLIMIT_CPU_SECONDS", 300, zero_disables=False),
)


def resolve_limit(limit: _Limit) -> int:
    """Return the soft limit to apply, or 0 when the limit is disabled."""
    raw = os.environ.get(limit.env_var, "").strip()
    if not raw:
        return limit.default
    value = max(int(raw), 0)
    if value == 0 and not limit.zero_disables:
        return limit.default
    return value


def apply_resource_limits() -> None:
    if sys.platform == "win32":
        return

    try:
        import resource

        for limit in WORKER_LIMITS:
            value = resolve_limit(limit)
            if value:
                resource.setrlimit(
                    getattr(resource, limit.resource_name),
                    (value, resource.RLIM_INFINITY),
                )
    except (ImportError, ValueError, OSError) as exc:
        logger.warning("Failed to apply resource limits: %s", exc)
