"""ULID generation for request correlation.

``generate_ulid()`` returns a 26-character ULID used as:
  - the X-Request-ID response header set by RequestIDMiddleware
  - the request_id field bound into every structured log line

Uses the ``python-ulid`` library; ULIDs are never hand-rolled here.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        request_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(request_id) == 26
    """
    return str(ULID())
