# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS SigV4 request verification and re-signing for proxies.

Subpackages:

- ``sigv4proxy.signing``: canonicalization, key derivation, sign/presign
  orchestration, chunk signing and inbound verification
"""

__version__ = "0.1.0"
