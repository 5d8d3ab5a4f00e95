"""
core/env.py -- Prefix-aware environment lookup and .env discovery.

Every service (Token, Evaluation, Grading) reads the same variable names,
but a shared deployment may hold one value per service in a single
environment. A service-scoped key such as EVALUATION_PORT therefore wins over
the shared PORT, and the declared default is used only when neither exists.

Design patterns used:
  Prefix-fallback lookup: resolve() checks <PREFIX><NAME>, then <NAME>, then
      the default. Nothing is cached -- the mapping is read on every call, so
      a late os.environ mutation is visible immediately.

  First-found-wins merge: load_sources() walks the candidate paths in order
      and never overwrites a key that is already set. The ambient process
      environment is loaded before any file, so it always takes precedence.

  Explicit environ: every function accepts an optional mapping and falls
      back to os.environ. Tests pass a plain dict instead of patching globals.

Layer rule: core/ is the kernel. This module may not import from api/ or
auth/.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger("campus.config")

DEFAULT_PREFIX = "EVALUATION_"

# service name -> (env prefix, directory under backend/)
SERVICES: dict[str, tuple[str, str]] = {
    "token": ("TOKEN_", "Token-System"),
    "evaluation": ("EVALUATION_", "Evaluation-System"),
    "grading": ("GRADING_", "Grading-System"),
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ConfigurationError(Exception):
    """Base class for configuration resolution failures."""


class MissingConfiguration(ConfigurationError, KeyError):
    """A required key was absent in both its prefixed and unprefixed form."""

    def __init__(self, name: str, prefix: str) -> None:
        self.name = name
        self.prefix = prefix
        super().__init__(f"Required environment variable {name} or {prefix}{name} is not set")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message and wrap it in quotes.
        return self.args[0]


class FileDiscoveryFailure(ConfigurationError):
    """A candidate .env file existed but could not be read or decoded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Could not load {path}: {reason}")


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def _environ(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def resolve(
    name: str,
    prefix: str = DEFAULT_PREFIX,
    default: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Return prefix+name, else name, else default (None when not supplied).

    A key set to the empty string counts as present here -- the same rule
    os.environ.get() applies. Callers that treat "" as unset should use
    validate_required().
    """
    if not name:
        raise ValueError("Environment variable name must be non-empty")
    env = _environ(environ)
    value = env.get(f"{prefix}{name}")
    if value is not None:
        return value
    value = env.get(name)
    if value is not None:
        return value
    return default


def require_resolve(
    name: str,
    prefix: str = DEFAULT_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Like resolve(), but raise MissingConfiguration when both forms are absent."""
    value = resolve(name, prefix, environ=environ)
    if value is None:
        raise MissingConfiguration(name, prefix)
    return value


def resolve_non_empty(
    name: str,
    prefix: str = DEFAULT_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Like resolve(), but an empty value in either form falls through to the next."""
    return resolve(name, prefix, environ=environ) or resolve(name, "", environ=environ) or None


def prefixed_keys(prefix: str = DEFAULT_PREFIX, environ: Mapping[str, str] | None = None) -> list[str]:
    """Return the sorted names that carry the given prefix. Values are never exposed."""
    return sorted(k for k in _environ(environ) if k.startswith(prefix))


# ---------------------------------------------------------------------------
# Required-key validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequiredCheck:
    """Outcome of validate_required(). Truthy only when nothing is missing."""

    ok: bool
    missing: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok


def validate_required(
    required_keys: Iterable[str],
    prefix: str = DEFAULT_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> RequiredCheck:
    """Report which required keys resolve to no value in either form.

    Empty strings count as missing: a deployment that exports PGHOST="" is
    not configured. An empty prefixed value does not hide a non-empty bare
    one. The check never raises and never exits -- the caller decides what
    to do with the missing list.
    """
    missing = [key for key in required_keys if not resolve_non_empty(key, prefix, environ)]
    return RequiredCheck(ok=not missing, missing=missing)


# ---------------------------------------------------------------------------
# .env discovery
# ---------------------------------------------------------------------------


def service_prefix(service: str) -> str:
    """Return the env prefix for a service name ("token", "evaluation", "grading")."""
    try:
        return SERVICES[service.lower()][0]
    except KeyError:
        raise ValueError(f"Unknown service {service!r}; expected one of {sorted(SERVICES)}") from None


def default_candidate_paths(service: str = "evaluation", root: Path | str | None = None) -> list[Path]:
    """Return the well-known .env locations for a service in priority order.

    Order: <root>/.env, <root>/backend/.env, <root>/backend/<Service>/.env.
    The root .env is first because platform deployments put the shared file
    there; a service directory .env only fills in what is still unset.
    """
    service_prefix(service)  # validates the name
    base = Path.cwd() if root is None else Path(root)
    backend = base / "backend"
    return [base / ".env", backend / ".env", backend / SERVICES[service.lower()][1] / ".env"]


def _read_source(path: Path) -> dict[str, str]:
    """Parse one .env file. Raises FileDiscoveryFailure if it cannot be read."""
    try:
        values = dotenv_values(path, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise FileDiscoveryFailure(path, str(exc)) from exc
    # A bare "KEY" line without "=" parses to None -- there is no value to merge.
    return {k: v for k, v in values.items() if v is not None}


def load_sources(
    candidate_paths: Iterable[Path | str],
    environ: MutableMapping[str, str] | None = None,
) -> list[Path]:
    """Merge every existing candidate file into the environment, first found wins.

    Keys that are already set (by the ambient environment or by an earlier
    file) are left untouched. Unreadable files are logged and skipped as if
    absent. Returns the paths that were actually loaded.
    """
    env = os.environ if environ is None else environ
    loaded: list[Path] = []
    for candidate in candidate_paths:
        path = Path(candidate)
        if not path.is_file():
            continue
        try:
            values = _read_source(path)
        except FileDiscoveryFailure as exc:
            logger.warning("%s -- skipping", exc)
            continue
        added = 0
        for key, value in values.items():
            if key not in env:
                env[key] = value
                added += 1
        logger.info("Loaded environment variables from %s (%d new)", path, added)
        loaded.append(path)
    if not loaded:
        logger.info("No .env files found, relying on system environment variables")
    return loaded
