# Copyright 2022 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Client implementation for interacting with Rekor.
"""

from __future__ import annotations

import json
import logging
from abc import ABC
from typing import Any, List, Optional

import rekor_types
import requests

from cosign._internal import USER_AGENT
from cosign._internal.rekor import EntryRequestBody, RekorClientError
from cosign.deadline import Deadline, _or_unbounded
from cosign.errors import BackendError, BackendErrorReason
from cosign.transparency import LogEntry

_logger = logging.getLogger(__name__)

DEFAULT_REKOR_URL = "https://rekor.sigstore.dev"
STAGING_REKOR_URL = "https://rekor.sigstage.dev"


class _Endpoint(ABC):
    def __init__(self, url: str, session: Optional[requests.Session] = None) -> None:
        # Note that _Endpoint may not be thread be safe if the same Session is provided
        # to an _Endpoint in multiple threads
        self.url = url
        if session is None:
            session = requests.Session()
            session.headers.update(
                {
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": USER_AGENT,
                }
            )

        self.session = session

    def _request(
        self, method: str, url: str, deadline: Optional[Deadline], **kwargs: Any
    ) -> requests.Response:
        timeout = _or_unbounded(deadline).remaining()
        try:
            resp: requests.Response = self.session.request(
                method, url, timeout=timeout, **kwargs
            )
        except requests.Timeout as exc:
            raise BackendError(
                f"Rekor request timed out: {url}", BackendErrorReason.CANCELLED
            ) from exc
        except requests.RequestException as exc:
            raise BackendError(f"Rekor is unreachable: {url}") from exc
        return resp


class RekorLog(_Endpoint):
    """
    Represents a Rekor instance's log endpoint.
    """

    @property
    def entries(self) -> RekorEntries:
        """
        Returns a `RekorEntries` capable of accessing detailed information
        about individual log entries.
        """
        return RekorEntries(f"{self.url}/entries", session=self.session)


class RekorEntries(_Endpoint):
    """
    Represents the individual log entry endpoints on a Rekor instance.
    """

    def get(
        self,
        *,
        uuid: Optional[str] = None,
        log_index: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> LogEntry:
        """
        Retrieve a specific log entry, either by UUID or by log index.

        Either `uuid` or `log_index` must be present, but not both.
        """
        if (uuid is None) == (log_index is None):
            raise ValueError("uuid or log_index required, but not both")

        if uuid is not None:
            resp = self._request("GET", f"{self.url}/{uuid}", deadline)
        else:
            resp = self._request("GET", self.url, deadline, params={"logIndex": log_index})

        try:
            resp.raise_for_status()
        except requests.HTTPError as http_error:
            raise RekorClientError(http_error)
        return LogEntry._from_response(resp.json())

    def post(
        self,
        payload: EntryRequestBody,
        deadline: Optional[Deadline] = None,
    ) -> LogEntry:
        """
        Submit a new entry for inclusion in the Rekor log.
        """

        _logger.debug(f"proposed: {json.dumps(payload)}")

        resp = self._request("POST", self.url, deadline, json=payload)
        try:
            resp.raise_for_status()
        except requests.HTTPError as http_error:
            raise RekorClientError(http_error)

        integrated_entry = resp.json()
        _logger.debug(f"integrated: {integrated_entry}")
        return LogEntry._from_response(integrated_entry)

    @property
    def retrieve(self) -> RekorEntriesRetrieve:
        """
        Returns a `RekorEntriesRetrieve` capable of retrieving entries.
        """
        return RekorEntriesRetrieve(f"{self.url}/retrieve", session=self.session)


class RekorEntriesRetrieve(_Endpoint):
    """
    Represents the entry retrieval endpoints on a Rekor instance.
    """

    def post(
        self,
        expected_entry: rekor_types.Hashedrekord,
        deadline: Optional[Deadline] = None,
    ) -> List[LogEntry]:
        """
        Retrieves the Rekor entries matching an expected `hashedrekord` body,
        i.e. identified by their signature, artifact hash and public key.

        Returns an empty list if Rekor has no entry corresponding to the
        signing materials. The returned entries are not checked against
        `expected_entry` here; callers must do that themselves.
        """
        data = {"entries": [expected_entry.model_dump(mode="json", by_alias=True)]}

        resp = self._request("POST", self.url, deadline, json=data)
        try:
            resp.raise_for_status()
        except requests.HTTPError as http_error:
            if http_error.response is not None and http_error.response.status_code == 404:
                return []
            raise RekorClientError(http_error)

        # The response is a list of `{uuid: LogEntry}` objects.
        results = resp.json()
        if not isinstance(results, list):
            raise BackendError("Rekor returned a malformed entry list")

        return [LogEntry._from_response(result) for result in results]


class RekorClient:
    """The internal Rekor client"""

    def __init__(self, url: str, session: Optional[requests.Session] = None) -> None:
        """
        Create a new `RekorClient` from the given URL.
        """
        self.url = f"{url.rstrip('/')}/api/v1"
        self._session = session

    @classmethod
    def production(cls) -> RekorClient:
        """
        Returns a `RekorClient` populated with the default Rekor production instance.
        """
        return cls(DEFAULT_REKOR_URL)

    @classmethod
    def staging(cls) -> RekorClient:
        """
        Returns a `RekorClient` populated with the default Rekor staging instance.
        """
        return cls(STAGING_REKOR_URL)

    @property
    def log(self) -> RekorLog:
        """
        Returns a `RekorLog` adapter for making requests to a Rekor log.
        """

        return RekorLog(f"{self.url}/log", session=self._session)

    def create_entry(
        self, request: EntryRequestBody, deadline: Optional[Deadline] = None
    ) -> LogEntry:
        """
        Submit the request to Rekor.
        """
        return self.log.entries.post(request, deadline)

    def find_entries(
        self, expected_entry: rekor_types.Hashedrekord, deadline: Optional[Deadline] = None
    ) -> List[LogEntry]:
        """
        Look up the entries matching `expected_entry`.
        """
        return self.log.entries.retrieve.post(expected_entry, deadline)
