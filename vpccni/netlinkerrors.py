"""Classification of errors returned by routing-table operations."""

from __future__ import annotations

import errno


def _has_errno(err: BaseException, code: int) -> bool:
    return isinstance(err, OSError) and err.errno == code


def is_not_exists_error(err: BaseException) -> bool:
    """Whether the error says the route to remove is already gone (ESRCH)."""
    return _has_errno(err, errno.ESRCH)


def is_route_exists_error(err: BaseException) -> bool:
    """Whether the error says the route to add is already present (EEXIST)."""
    return _has_errno(err, errno.EEXIST)


def is_network_unreachable_error(err: BaseException) -> bool:
    """Whether the error says the network the route needs is not reachable yet (ENETUNREACH)."""
    return _has_errno(err, errno.ENETUNREACH)