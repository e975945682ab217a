#!/usr/bin/env python3
"""Read and change the MongoDB query profiler through the `profile` command."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from bson import json_util
from pymongo.database import Database
from pymongo.errors import PyMongoError

log = logging.getLogger(__name__)

# Profiling levels
# See: https://www.mongodb.com/docs/manual/reference/command/profile/
OFF = 0
SLOW_ONLY = 1
ALL = 2

# Passing this as `filter` clears any profiler filter on the server.
FILTER_UNSET = "unset"

Filter = Union[Dict[str, Any], str]


class ProfilerError(RuntimeError):
    """Raised when a profile command fails."""


@dataclass(frozen=True)
class ProfilerSettings:
    profile: int
    slowms: int
    sample_rate: Optional[float] = None
    filter: Optional[Filter] = None

    @classmethod
    def override(cls, level: int, slowms: int) -> "ProfilerSettings":
        """Settings for an override window: full sampling, no filter."""
        return cls(profile=level, slowms=slowms, sample_rate=1.0, filter=FILTER_UNSET)

    @classmethod
    def from_reply(cls, raw: Dict[str, Any]) -> "ProfilerSettings":
        """
        Map a `{profile: -1}` reply to a snapshot.

        Optional fields are only carried when the server reported them, so the
        snapshot can be sent back as-is to restore the server.
        """
        sample_rate = raw.get("sampleRate")
        return cls(
            profile=int(raw["was"]),
            slowms=int(raw["slowms"]),
            sample_rate=float(sample_rate) if sample_rate is not None else None,
            filter=raw.get("filter"),
        )

    def to_command(self) -> Dict[str, Any]:
        cmd: Dict[str, Any] = {"profile": self.profile, "slowms": self.slowms}
        if self.sample_rate is not None:
            cmd["sampleRate"] = float(self.sample_rate)
        if self.filter is not None:
            cmd["filter"] = self.filter
        return cmd

    def describe(self) -> str:
        return json.dumps(self.to_command(), default=json_util.default)


RESET_SETTINGS = ProfilerSettings(profile=OFF, slowms=100, sample_rate=1.0, filter=FILTER_UNSET)


class ProfilerClient:
    """Profiler commands against a single database."""

    def __init__(self, database: Database):
        self.db = database

    @property
    def db_name(self) -> str:
        return self.db.name

    def read_current(self) -> ProfilerSettings:
        try:
            raw = self.db.command({"profile": -1})
        except PyMongoError as e:
            raise ProfilerError(f"unable to read profiler settings on db '{self.db_name}': {e}") from e

        current = ProfilerSettings.from_reply(raw)
        log.info(f"profile level is {current.describe()}")
        return current

    def apply(self, settings: ProfilerSettings) -> None:
        cmd = settings.to_command()
        try:
            self.db.command(cmd)
        except PyMongoError as e:
            raise ProfilerError(f"unable to set profiler on db '{self.db_name}': {e}") from e
        log.info(f"set profiler to {settings.describe()} on db '{self.db_name}'")
