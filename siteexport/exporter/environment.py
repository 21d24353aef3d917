"""Preparation of the process before a long export step."""

import logging
import sys

logger = logging.getLogger(__name__)

_RAISABLE_LIMITS = ("RLIMIT_NOFILE", "RLIMIT_AS")


def raise_resource_limits() -> dict[str, tuple[int, int]]:
    """Raise soft limits to their hard ceilings where the platform allows it."""
    if sys.platform == "win32":
        return {}

    import resource  # pylint: disable=import-outside-toplevel

    limits: dict[str, tuple[int, int]] = {}
    for name in _RAISABLE_LIMITS:
        limit = getattr(resource, name, None)
        if limit is None:
            continue
        soft, hard = resource.getrlimit(limit)
        if soft != hard:
            try:
                resource.setrlimit(limit, (hard, hard))
                soft = hard
            except (ValueError, OSError) as e:
                logger.debug("Cannot raise %s to %s: %s", name, hard, e)
        limits[name] = (soft, hard)

    logger.info(
        "Environment: %s",
        ", ".join(f"{name}={_format_limit(soft)}" for name, (soft, _) in limits.items()),
    )
    return limits


def _format_limit(value: int) -> str:
    import resource  # pylint: disable=import-outside-toplevel

    return "unlimited" if value == resource.RLIM_INFINITY else str(value)
