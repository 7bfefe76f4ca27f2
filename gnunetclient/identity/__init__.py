"""Identity service client.

- IdentityClient: list, look up, create, rename and delete egos, and manage
  the default ego of other services
- Ego: a named private key
"""

from gnunetclient.identity.client import Ego, IdentityClient
from gnunetclient.identity.protocol import (
    RESULT_ALREADY_EXISTS,
    RESULT_NOT_FOUND,
    RESULT_OK,
    ResultCode,
    Update,
)

__all__ = [
    "Ego",
    "IdentityClient",
    "RESULT_ALREADY_EXISTS",
    "RESULT_NOT_FOUND",
    "RESULT_OK",
    "ResultCode",
    "Update",
]
