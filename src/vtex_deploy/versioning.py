"""Identifier and version derivation helpers.

QA versions carry a ``qa.<epoch-ms>`` prerelease qualifier so repeated QA
runs never collide with a version the platform already registered;
production versions strip any qualifier again.

Example:
    >>> stable_version("1.4.0-qa.1717171717171")
    '1.4.0'
    >>> suggest_next_version("v1.4.2")
    '1.4.3'
"""

from __future__ import annotations

import re
import threading
import time
import uuid

QA_PRERELEASE_TAG = "qa"
DEFAULT_VERSION = "0.1.0"
INITIAL_RELEASE_VERSION = "1.0.0"

# MAJOR.MINOR.PATCH[-prerelease][+build], optional leading "v" or "="
_SEMVER_PATTERN = re.compile(
    r"^\s*[v=]?\s*"
    r"(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?\s*$"
)

_clock_lock = threading.Lock()
_last_qa_stamp = 0


def generate_deployment_id() -> str:
    """Return a unique id of the form ``deploy_<epoch-ms>_<hex8>``."""
    return f"deploy_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def parse_version(version: str) -> tuple[int, int, int] | None:
    """Return (major, minor, patch), or None when ``version`` is not semver."""
    match = _SEMVER_PATTERN.match(version)
    if match is None:
        return None
    return int(match["major"]), int(match["minor"]), int(match["patch"])


def _next_qa_stamp() -> int:
    global _last_qa_stamp
    with _clock_lock:
        stamp = max(int(time.time() * 1000), _last_qa_stamp + 1)
        _last_qa_stamp = stamp
        return stamp


def qa_version(base_version: str) -> str:
    """Derive a unique QA version ``<core>-qa.<epoch-ms>`` from ``base_version``.

    The millisecond stamp is strictly increasing within the process, so two
    consecutive calls never return the same string. An unparseable base
    falls back to ``0.1.0``.
    """
    core = stable_version(base_version)
    return f"{core}-{QA_PRERELEASE_TAG}.{_next_qa_stamp()}"


def stable_version(version: str) -> str:
    """Strip prerelease and build qualifiers; ``0.1.0`` if unparseable.

    Idempotent: ``stable_version(stable_version(v)) == stable_version(v)``.

    Examples:
        >>> stable_version("2.0.1-beta.3+build.7")
        '2.0.1'
        >>> stable_version("not-a-version")
        '0.1.0'
    """
    parts = parse_version(version)
    if parts is None:
        return DEFAULT_VERSION
    return "{}.{}.{}".format(*parts)


def suggest_next_version(latest_tag: str | None) -> str:
    """Suggest the next production version from the latest git tag.

    The patch component is incremented; ``1.0.0`` when there is no usable tag.
    """
    if not latest_tag:
        return INITIAL_RELEASE_VERSION
    parts = parse_version(latest_tag)
    if parts is None:
        return INITIAL_RELEASE_VERSION
    major, minor, patch = parts
    return f"{major}.{minor}.{patch + 1}"


__all__: list[str] = [
    "DEFAULT_VERSION",
    "QA_PRERELEASE_TAG",
    "generate_deployment_id",
    "parse_version",
    "qa_version",
    "stable_version",
    "suggest_next_version",
]
