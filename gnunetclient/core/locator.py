"""Locate and connect to daemon services.

Each service listens on its own UNIX socket whose path is the ``UNIXPATH``
option in the service's configuration section.

Usage:
    locator = SocketLocator()
    async with await locator.connect_identity() as identity:
        egos = await identity.list()
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from gnunetclient.core.configs import Configuration
from gnunetclient.core.transport import Transport

if TYPE_CHECKING:
    from gnunetclient.cadet.mux import CadetMux
    from gnunetclient.identity.client import IdentityClient

logger = logging.getLogger(__name__)


class Service:
    """A service endpoint: a name plus the socket path it listens on."""

    def __init__(self, name: str, unixpath: Path):
        self.name = name
        self.unixpath = unixpath

    def __repr__(self) -> str:
        return f"Service({self.name!r}, {str(self.unixpath)!r})"

    async def connect(self) -> Transport:
        """Open a new transport to this service."""
        logger.debug(f"Connecting to service '{self.name}' at {self.unixpath}")
        return await Transport.connect(self.unixpath)


class SocketLocator:
    """
    Turns service names into socket paths.

    Args:
        config: Resolved configuration; loaded from the default location
            when omitted
    """

    def __init__(self, config: Optional[Configuration] = None):
        self.config = config or Configuration.load()

    def unixpath(self, service: str) -> Path:
        """
        Return the socket path of ``service``.

        Raises:
            ConfigurationError: If the section has no UNIXPATH
        """
        return self.config.get_value_filename(service, "UNIXPATH")

    def service(self, name: str) -> Service:
        return Service(name, self.unixpath(name))

    async def connect_identity(self) -> "IdentityClient":
        """Connect an :class:`IdentityClient` to the ``identity`` service."""
        from gnunetclient.identity.client import IdentityClient

        return IdentityClient(await self.service("identity").connect())

    async def connect_cadet(
        self,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> "CadetMux":
        """Connect a started :class:`CadetMux` to the ``cadet`` service."""
        from gnunetclient.cadet.mux import CadetMux

        mux = CadetMux(await self.service("cadet").connect(), on_error=on_error)
        mux.start()
        return mux
