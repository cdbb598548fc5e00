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
Deadlines and cancellation for remote calls.

Every call into a KMS provider or a transparency log is given a `Deadline`.
Local computation never consults it.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from cosign.errors import BackendError, BackendErrorReason


class Deadline:
    """
    A point in time after which remote work must not start, plus an explicit
    cancellation flag.

    A `Deadline` may be shared across threads; `cancel()` is visible to all of
    them.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        """
        Create a new `Deadline` expiring `timeout` seconds from now, or never
        if `timeout` is `None`.
        """
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """
        Cancel all remote work guarded by this deadline.
        """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        """
        Whether this deadline has been cancelled or has expired.
        """
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """
        Returns the number of seconds left, or `None` for an unbounded deadline.

        Raises `BackendError` with reason `CANCELLED` if no time is left.
        """
        self.check()
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    def check(self) -> None:
        """
        Raises `BackendError` with reason `CANCELLED` if this deadline has been
        cancelled or has expired.
        """
        if self.cancelled:
            raise BackendError("operation cancelled", BackendErrorReason.CANCELLED)


def _or_unbounded(deadline: Optional[Deadline]) -> Deadline:
    return deadline if deadline is not None else Deadline()
