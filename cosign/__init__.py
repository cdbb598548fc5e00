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
The `cosign` Python APIs.

For command-line usage, run `cosign --help`.

Otherwise, here are some quick starting points:

* `cosign.keys`: loading local, KMS-backed and certificate keys
* `cosign.payload`: the canonical "simple signing" payload
* `cosign.sign`: creation of signatures
* `cosign.verify`: verification of blob signatures, certificate chains
  and transparency log entries
"""

from cosign._version import __version__

__all__ = ["__version__"]
