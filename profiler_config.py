#!/usr/bin/env python3
"""
Configuration for the MongoDB Profiler Controller.

Every option can be given on the command line. When a flag is omitted the
matching environment variable is used instead (a local .env file is loaded by
the entry point before this runs).
"""

from __future__ import annotations

import argparse
import json
import logging
import re
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Mapping, Optional, Sequence

log = logging.getLogger(__name__)

DEFAULT_DB = "admin"
DEFAULT_ATLAS_BASE_URL = "https://cloud.mongodb.com/api/atlas/v2"

_TRUE = ("1", "true", "yes", "on")
_PASSWORD_RE = re.compile(r"^(?P<head>[^:/]+://[^:@/]+):[^@]*@")

DESCRIPTION = "MongoDB Profiler Controller (mpc)"

EPILOG = """\
example usage:
  mpc --uri 'mongodb://localhost:27017' --t 5 <options>

options marked [ENV] are read from that environment variable (or a .env file)
when the flag is omitted.

note: sending SIGINT during the wait still restores the profiler back to its
original settings before exiting
"""


class ConfigError(RuntimeError):
    """Raised when the configuration is missing or inconsistent."""


@dataclass(frozen=True)
class AtlasCredentials:
    public_key: str
    private_key: str
    project_id: str


@dataclass(frozen=True)
class OverrideRequest:
    level: int
    slowms: int
    fixed: bool
    duration: int
    db_name: str
    reset: bool


@dataclass(frozen=True)
class Config:
    mongodb_uri: str
    db_name: str = DEFAULT_DB
    slowms: int = 0
    level: int = 0
    duration: Optional[int] = None
    fixed: bool = False
    reset: bool = False
    atlas_public_key: Optional[str] = None
    atlas_private_key: Optional[str] = None
    atlas_project_id: Optional[str] = None
    atlas_base_url: str = DEFAULT_ATLAS_BASE_URL
    log_level: str = "INFO"
    is_atlas: bool = False

    def override_request(self) -> OverrideRequest:
        return OverrideRequest(
            level=self.level,
            slowms=self.slowms,
            fixed=self.fixed,
            duration=self.duration or 0,
            db_name=self.db_name,
            reset=self.reset,
        )

    def atlas_credentials(self) -> Optional[AtlasCredentials]:
        if not self.is_atlas:
            return None
        return AtlasCredentials(
            public_key=self.atlas_public_key,
            private_key=self.atlas_private_key,
            project_id=self.atlas_project_id,
        )

    def redacted(self) -> Dict[str, Any]:
        """Configuration safe to log: no passwords, no private key, no unset values."""
        out = {}
        for k, v in asdict(self).items():
            if v is None or v is False or v == "":
                continue
            if k == "mongodb_uri":
                v = redact_uri(v)
            elif k == "atlas_private_key":
                v = "xxx"
            out[k] = v
        return out


def redact_uri(uri: str) -> str:
    return _PASSWORD_RE.sub(r"\g<head>:xxx@", uri, count=1)


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="mpc",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    required = parser.add_argument_group("required")
    required.add_argument("--uri", help="mongodb connection string [MONGODB_URI]")
    required.add_argument(
        "--t", "--duration", dest="duration", type=int,
        help="time in MINUTES to wait before restoring the profiler to its original settings [MPC_DURATION]",
    )

    optional = parser.add_argument_group("optional")
    optional.add_argument(
        "--fixed", action="store_true", default=None,
        help="do not wait before restoring settings [MPC_FIXED]",
    )
    optional.add_argument(
        "--db", help=f"change the profiler settings on a different database (defaults to {DEFAULT_DB}) [MPC_DB]",
    )
    optional.add_argument("--slowms", type=int, help="the desired slowms threshold [MPC_SLOWMS]")
    optional.add_argument(
        "--level", type=int, choices=(0, 1, 2),
        help="the desired profiling level (levels other than 0 can degrade performance) [MPC_LEVEL]",
    )
    optional.add_argument(
        "--reset", action="store_true", default=None,
        help="change settings back to defaults (100ms slow, unset filter, dynamic slowms ON for Atlas); "
             "all other parameters are ignored [MPC_RESET]",
    )
    optional.add_argument("--log-level", dest="log_level", help="logging level (defaults to INFO) [MPC_LOG_LEVEL]")

    atlas = parser.add_argument_group("atlas settings")
    atlas.add_argument(
        "--atlas_project_id", help="the project ID the cluster is in [MONGODB_ATLAS_PROJECT_ID]",
    )
    atlas.add_argument(
        "--atlas_public_key",
        help="public key of the API key used to toggle dynamic slowms [MONGODB_ATLAS_PUBLIC_KEY]",
    )
    atlas.add_argument(
        "--atlas_private_key",
        help="private key of the API key used to toggle dynamic slowms [MONGODB_ATLAS_PRIVATE_KEY]",
    )
    return parser


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    v = environ.get(name)
    return v if v not in (None, "") else None


def _env_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    v = _env(environ, name)
    if v is None:
        return None
    try:
        return int(v)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{v}'") from None


def _env_bool(environ: Mapping[str, str], name: str) -> bool:
    v = _env(environ, name)
    return v is not None and v.strip().lower() in _TRUE


def _first(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def load_config(argv: Sequence[str], environ: Mapping[str, str]) -> Config:
    """Resolve flags and environment into a validated Config."""
    args = build_parser().parse_args(list(argv))

    cfg = Config(
        mongodb_uri=_first(args.uri, _env(environ, "MONGODB_URI")) or "",
        db_name=_first(args.db, _env(environ, "MPC_DB"), DEFAULT_DB),
        slowms=_first(args.slowms, _env_int(environ, "MPC_SLOWMS"), 0),
        level=_first(args.level, _env_int(environ, "MPC_LEVEL"), 0),
        duration=_first(args.duration, _env_int(environ, "MPC_DURATION")),
        fixed=bool(args.fixed) or _env_bool(environ, "MPC_FIXED"),
        reset=bool(args.reset) or _env_bool(environ, "MPC_RESET"),
        atlas_public_key=_first(args.atlas_public_key, _env(environ, "MONGODB_ATLAS_PUBLIC_KEY")),
        atlas_private_key=_first(args.atlas_private_key, _env(environ, "MONGODB_ATLAS_PRIVATE_KEY")),
        atlas_project_id=_first(args.atlas_project_id, _env(environ, "MONGODB_ATLAS_PROJECT_ID")),
        atlas_base_url=_first(_env(environ, "MONGODB_ATLAS_BASE_URL"), DEFAULT_ATLAS_BASE_URL),
        log_level=_first(args.log_level, _env(environ, "MPC_LOG_LEVEL"), "INFO").upper(),
    )
    return validate(cfg)


def validate(cfg: Config) -> Config:
    """Check a Config and return it with `is_atlas` resolved."""
    if not cfg.mongodb_uri:
        raise ConfigError("must provide uri for mongodb")

    keys = (cfg.atlas_public_key, cfg.atlas_private_key, cfg.atlas_project_id)
    is_atlas = all(keys)
    if any(keys) and not is_atlas:
        raise ConfigError(
            "not all Atlas credentials (public + private key, projectId) were provided"
        )
    if not is_atlas and ".mongodb.net" in cfg.mongodb_uri:
        log.warning(
            "this looks like an Atlas cluster, but no Atlas credentials were provided; "
            "dynamic slowms will not be toggled"
        )

    if cfg.level not in (0, 1, 2):
        raise ConfigError(f"level must be 0, 1 or 2, got {cfg.level}")
    if cfg.slowms < 0:
        raise ConfigError(f"slowms must not be negative, got {cfg.slowms}")
    if cfg.duration is not None and cfg.duration < 0:
        raise ConfigError(f"duration must not be negative, got {cfg.duration}")

    if not cfg.reset and not cfg.fixed and not cfg.duration:
        raise ConfigError(
            "must provide time in minutes to wait before restoring profiler or --fixed to change once"
        )

    return replace(cfg, is_atlas=is_atlas)


def describe(cfg: Config) -> str:
    return json.dumps(cfg.redacted(), indent=2)
