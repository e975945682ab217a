#!/usr/bin/env python3
"""Toggle Atlas dynamic slow-ms (managedSlowMs) using the Atlas Admin API."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import requests
from requests.auth import HTTPDigestAuth

from profiler_config import DEFAULT_ATLAS_BASE_URL, AtlasCredentials

log = logging.getLogger(__name__)

JSON_ACCEPT = "application/vnd.atlas.2023-02-01+json"
DEFAULT_TIMEOUT = 30


class AtlasApiError(RuntimeError):
    """Raised when Atlas does not accept a managedSlowMs request."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AtlasSlowMsClient:
    """
    Enable or disable Atlas dynamic slow-ms for one project.

    Without credentials every call is a no-op and no HTTP session is created.
    """

    def __init__(
        self,
        credentials: Optional[AtlasCredentials],
        base_url: str = DEFAULT_ATLAS_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        if credentials is not None and self._session is None:
            self._session = requests.Session()
        if credentials is not None:
            self._session.auth = HTTPDigestAuth(credentials.public_key, credentials.private_key)
            self._session.headers.update({"Accept": JSON_ACCEPT})

    @property
    def enabled(self) -> bool:
        return self.credentials is not None

    def url(self, verb: str) -> str:
        return f"{self.base_url}/groups/{self.credentials.project_id}/managedSlowMs/{verb}"

    def set_dynamic_slowms(self, enable: bool) -> None:
        if not self.enabled:
            return

        if enable:
            method, verb = "POST", "enable"
            log.info("enabling atlas dynamic slowms")
        else:
            method, verb = "DELETE", "disable"
            log.info("disabling atlas dynamic slowms")

        try:
            resp = self._session.request(method, self.url(verb), timeout=self.timeout)
        except requests.RequestException as e:
            raise AtlasApiError(f"unable to {verb} atlas dynamic slowms: {e}") from e

        if resp.status_code != 204:
            payload = _payload(resp)
            log.error(f"error: {payload if isinstance(payload, str) else json.dumps(payload)}")
            raise AtlasApiError(
                f"unable to {verb} atlas dynamic slowms (HTTP {resp.status_code})",
                status_code=resp.status_code,
                payload=payload,
            )

    def close(self) -> None:
        if self._session is not None:
            self._session.close()


def _payload(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
