#!/usr/bin/env python3
"""
Temporarily override the MongoDB profiler and put it back afterwards.

The controller runs once per process:

  capture -> disable atlas dynamic slowms -> apply override
          -> wait (or not, in fixed mode)
          -> restore captured settings -> re-enable atlas dynamic slowms

Restoration runs at most once and is reached from every exit path after the
capture: normal completion, a failing command, or SIGINT/SIGTERM in any state.
The signal handler takes no locks and runs no commands. It records the
interrupt and, only while the controller sleeps, raises out of the sleep.
The restoration commands always run on the controller's own thread.
"""

from __future__ import annotations

import logging
import signal
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from atlas_slowms import AtlasApiError, AtlasSlowMsClient
from profiler_client import RESET_SETTINGS, ProfilerClient, ProfilerError, ProfilerSettings
from profiler_config import OverrideRequest

log = logging.getLogger(__name__)

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# failures the restore sequence logs and carries on from
RESTORE_ERRORS = (ProfilerError, AtlasApiError)


class _WaitInterrupted(Exception):
    """Raised by the signal handler to cut the sleep short."""


class State(Enum):
    IDLE = "idle"
    CAPTURED = "captured"
    OVERRIDING = "overriding"
    WAITING = "waiting"
    FIXED_DONE = "fixed_done"
    RESTORED = "restored"
    TERMINATED = "terminated"


class OverrideController:
    """Runs one profiler override window."""

    def __init__(
        self,
        request: OverrideRequest,
        profiler: ProfilerClient,
        atlas: AtlasSlowMsClient,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.request = request
        self.profiler = profiler
        self.atlas = atlas
        self.sleep = sleep or time.sleep
        self.interrupted = False
        self.state = State.IDLE
        self.previous: Optional[ProfilerSettings] = None
        self._sleeping = False
        self._restored = False
        self._saved_handlers: Dict[int, Any] = {}

    def run(self) -> int:
        """Run the override window; returns the process exit status."""
        self.previous = self.profiler.read_current()
        self.state = State.CAPTURED

        self._install_handlers()
        try:
            if self.request.reset:
                self._reset()
            else:
                self._override_and_restore()
        finally:
            self._uninstall_handlers()
            self.state = State.TERMINATED

        return 1 if self.interrupted else 0

    def _reset(self) -> None:
        log.info("resetting profiler to defaults, all other settings are ignored")
        try:
            self.profiler.apply(RESET_SETTINGS)
            self.atlas.set_dynamic_slowms(True)
        except BaseException:
            if self.interrupted:
                self.restore(raise_errors=False)
            raise
        if self.interrupted:
            log.info("interrupted during reset, restoring captured profiler settings")
            self.restore()

    def _override_and_restore(self) -> None:
        try:
            self.state = State.OVERRIDING
            self.atlas.set_dynamic_slowms(False)
            self.profiler.apply(ProfilerSettings.override(self.request.level, self.request.slowms))
            if self.request.fixed:
                self.state = State.FIXED_DONE
            else:
                self._wait()
        except BaseException:
            # the original error is the one reported
            self.restore(raise_errors=False)
            raise
        self.restore()

    def _wait(self) -> None:
        if self.interrupted:
            return
        self.state = State.WAITING
        minutes = self.request.duration
        wake = datetime.now(timezone.utc) + timedelta(minutes=minutes)
        log.info(f"sleeping for {minutes} minute(s) (wake at: {wake.isoformat()})")
        try:
            self._sleeping = True
            if not self.interrupted:
                self.sleep(minutes * 60)
            self._sleeping = False
        except _WaitInterrupted:
            log.info("wait interrupted, restoring profiler settings")
        finally:
            self._sleeping = False

    def restore(self, raise_errors: bool = True) -> None:
        """
        Put back the captured settings and re-enable atlas dynamic slowms.

        Both steps are attempted even if the first one fails; only the first
        failure is raised. Subsequent calls do nothing.
        """
        if self._restored or self.previous is None:
            return
        self._restored = True

        errors: List[Exception] = []
        try:
            self.profiler.apply(self.previous)
        except RESTORE_ERRORS as e:
            log.error(f"unable to restore profiler settings {self.previous.describe()}: {e}")
            errors.append(e)
        try:
            self.atlas.set_dynamic_slowms(True)
        except RESTORE_ERRORS as e:
            log.error(f"unable to re-enable atlas dynamic slowms: {e}")
            errors.append(e)

        self.state = State.RESTORED
        if errors and raise_errors:
            raise errors[0]

    def on_interrupt(self, signum: int, frame: Any) -> None:
        if self.interrupted:
            log.warning(f"received {signal.Signals(signum).name} again, restoration already in progress")
            return
        log.warning(f"received {signal.Signals(signum).name}")
        self.interrupted = True
        if self._sleeping:
            self._sleeping = False
            raise _WaitInterrupted()

    def _install_handlers(self) -> None:
        for signum in INTERRUPT_SIGNALS:
            self._saved_handlers[signum] = signal.signal(signum, self.on_interrupt)

    def _uninstall_handlers(self) -> None:
        for signum, handler in self._saved_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._saved_handlers.clear()
