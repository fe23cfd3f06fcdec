"""Deployment attempt identifiers.

Identifiers have the form ``<env>-<YYYYMMDD>-<HHMMSS>-<ordinal>`` with a
six-digit zero-padded ordinal.  They are lowercase and DNS-1123 safe, so
they can be embedded in Kubernetes object names, and they sort
lexicographically in time order within an environment.  The ordinal is
supplied by the caller (typically the CI run number) and disambiguates
attempts started within the same second.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import NamedTuple

from deploy_engine.config import Environment

_MAX_ORDINAL = 999_999
_ATTEMPT_ID_RE = re.compile(r"^(?P<env>[a-z]+)-(?P<date>\d{8})-(?P<time>\d{6})-(?P<ordinal>\d{6})$")


class AttemptIdentity(NamedTuple):
    environment: Environment
    timestamp: datetime
    run_ordinal: int


def generate_attempt_id(
    environment: Environment | str,
    run_ordinal: int,
    now: datetime | None = None,
) -> str:
    """Return the attempt identifier for *environment* at *now*.

    Ordinals above 999999 wrap around so the identifier keeps a fixed width.

    Raises
    ------
    ValueError
        If *environment* is unknown or *run_ordinal* is negative.
    """
    env = Environment(environment)
    if run_ordinal < 0:
        raise ValueError(f"run_ordinal must be non-negative, got {run_ordinal}")

    moment = (now or datetime.now(UTC)).astimezone(UTC)
    return f"{env.value}-{moment:%Y%m%d}-{moment:%H%M%S}-{run_ordinal % (_MAX_ORDINAL + 1):06d}"


def parse_attempt_id(attempt_id: str) -> AttemptIdentity:
    """Split an identifier produced by :func:`generate_attempt_id`."""
    match = _ATTEMPT_ID_RE.match(attempt_id)
    if match is None:
        raise ValueError(f"Invalid attempt id: {attempt_id!r}")
    timestamp = datetime.strptime(match["date"] + match["time"], "%Y%m%d%H%M%S").replace(tzinfo=UTC)
    return AttemptIdentity(
        environment=Environment(match["env"]),
        timestamp=timestamp,
        run_ordinal=int(match["ordinal"]),
    )
