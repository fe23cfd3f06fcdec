"""Content fingerprinting for an environment's configuration scripts.

The fingerprint is a SHA-256 digest over the per-file SHA-256 digests,
taken in file-name order.  Filesystem enumeration order therefore never
influences the result, and any single-byte change to any file (or any
rename, addition, or removal) produces a different fingerprint.
"""

from __future__ import annotations

import hashlib
import logging
import warnings
from collections.abc import Iterable, Sequence
from pathlib import Path

from deploy_engine.config import Environment
from deploy_engine.errors import ConfigSyntaxWarning, EmptyConfigError
from deploy_engine.models.snapshot import ConfigFile, ConfigSnapshot

logger = logging.getLogger(__name__)

# MQSC line continuation characters.  A script whose final command ends in
# one of these would swallow whatever the interpreter reads next.
_CONTINUATION_CHARS = ("+", "-")
_COMMENT_PREFIX = "*"


def digest_bytes(content: bytes) -> str:
    """Return the SHA-256 hex digest of *content*."""
    return hashlib.sha256(content).hexdigest()


def compute_fingerprint(pairs: Iterable[tuple[str, str]]) -> str:
    """Compute the snapshot fingerprint from ``(file name, digest)`` pairs.

    Pairs are sorted by file name before hashing, so callers may pass them
    in any order.
    """
    hasher = hashlib.sha256()
    for name, file_digest in sorted(pairs, key=lambda pair: pair[0]):
        hasher.update(name.encode("utf-8"))
        hasher.update(b"\x00")
        hasher.update(file_digest.encode("ascii"))
        hasher.update(b"\n")
    return hasher.hexdigest()


def lint_script(name: str, content: bytes) -> list[str]:
    """Run structural sanity checks on one script.

    Only the shape of the file is inspected (encoding, presence of commands,
    dangling continuations); MQSC command syntax is left to the interpreter.
    """
    findings: list[str] = []
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        findings.append(f"{name}: not valid UTF-8 ({exc.reason} at byte {exc.start})")
        return findings

    commands = [
        line.rstrip()
        for line in text.splitlines()
        if line.strip() and not line.lstrip().startswith(_COMMENT_PREFIX)
    ]
    if not commands:
        findings.append(f"{name}: contains no commands")
    elif commands[-1].endswith(_CONTINUATION_CHARS):
        findings.append(f"{name}: last command ends with a continuation character")
    return findings


def _recognised_files(directory: Path, extensions: Sequence[str]) -> list[Path]:
    wanted = {ext.lower() for ext in extensions}
    return [p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in wanted]


def compute_snapshot(
    config_root: Path,
    environment: Environment | str,
    extensions: Sequence[str] = (".mqsc",),
) -> ConfigSnapshot:
    """Read ``config_root/<environment>`` and return its :class:`ConfigSnapshot`.

    Parameters
    ----------
    config_root:
        Root of the configuration tree (one sub-directory per environment).
    environment:
        Environment name; must belong to :class:`Environment`.
    extensions:
        File suffixes that count as configuration scripts.

    Raises
    ------
    EmptyConfigError
        If the environment directory does not exist or contains no
        recognised files.
    ValueError
        If *environment* is not a known environment.
    """
    env = Environment(environment)
    directory = config_root / env.value

    if not directory.is_dir():
        raise EmptyConfigError(f"Configuration directory does not exist: {directory}")

    paths = _recognised_files(directory, extensions)
    if not paths:
        raise EmptyConfigError(
            f"No configuration files matching {', '.join(extensions)} in {directory}"
        )

    files: list[ConfigFile] = []
    findings: list[str] = []
    for path in sorted(paths, key=lambda p: p.name):
        content = path.read_bytes()
        files.append(ConfigFile(name=path.name, content=content, digest=digest_bytes(content)))
        findings.extend(lint_script(path.name, content))

    for finding in findings:
        logger.warning("Config lint: %s", finding)
        warnings.warn(finding, ConfigSyntaxWarning, stacklevel=2)

    fingerprint = compute_fingerprint((f.name, f.digest) for f in files)
    logger.info(
        "Computed snapshot for %s: %d file(s), fingerprint %s",
        env.value,
        len(files),
        fingerprint[:12],
    )
    return ConfigSnapshot(
        environment=env,
        files=tuple(files),
        fingerprint=fingerprint,
        warnings=tuple(findings),
    )
