"""Client for the identity service.

Egos are named private keys kept by the daemon. The conversation is
single-flight: each request runs to completion (or failure) before the
next one starts, so replies never need correlating.

Usage:
    client = await IdentityClient.connect(locator.unixpath("identity"))
    async with client:
        if await client.create("alice", PrivateKey.generate()):
            ...
        egos = await client.list()
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Union

from gnunetclient.core.codec import Frame
from gnunetclient.core.transport import Transport
from gnunetclient.crypto.keys import KeyType, PrivateKey, PublicKey
from gnunetclient.errors import HandleClosedError, ProtocolError, ResultError
from gnunetclient.identity.protocol import (
    IDENTITY_GET_DEFAULT,
    IDENTITY_RESULT_CODE,
    IDENTITY_SET_DEFAULT,
    IDENTITY_UPDATE,
    RESULT_ALREADY_EXISTS,
    RESULT_NOT_FOUND,
    RESULT_OK,
    Default,
    ResultCode,
    deserialize_default,
    deserialize_result_code,
    deserialize_update,
    serialize_create,
    serialize_delete,
    serialize_get_default,
    serialize_lookup,
    serialize_rename,
    serialize_set_default,
    serialize_start,
)

logger = logging.getLogger(__name__)


@dataclass
class Ego:
    """A named local identity."""
    name: str
    private_key: PrivateKey

    @classmethod
    def anonymous(cls) -> "Ego":
        """The well-known ego every peer shares for anonymous operations."""
        return cls("", PrivateKey(KeyType.ECDSA, (1).to_bytes(32, "little")))

    @property
    def public_key(self) -> Optional[PublicKey]:
        return self.private_key.extract_public()


class IdentityClient:
    """
    Request/response conversation with the identity service.

    An I/O error, a protocol violation or a cancelled request leaves the
    stream in an unknown state; the handle is then invalidated and every
    later call raises :class:`HandleClosedError`.
    """

    def __init__(self, transport: Transport):
        """
        Args:
            transport: Connected transport, owned by this client from now on
        """
        self._transport = transport
        self._lock = asyncio.Lock()
        self._failure: Optional[BaseException] = None
        self._closed = False
        self._subscribed = False

    @classmethod
    async def connect(cls, path: Union[str, Path]) -> "IdentityClient":
        return cls(await Transport.connect(path))

    async def close(self) -> None:
        self._closed = True
        await self._transport.disconnect()

    async def __aenter__(self) -> "IdentityClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def _conversation(self) -> AsyncIterator[Transport]:
        async with self._lock:
            if self._closed:
                raise HandleClosedError("identity client is closed")
            if self._failure is not None:
                raise HandleClosedError("identity client is no longer usable") from self._failure
            try:
                yield self._transport
            except (OSError, ProtocolError, asyncio.CancelledError) as e:
                self._failure = e
                raise

    @staticmethod
    def _result(frame: Frame) -> ResultCode:
        result = deserialize_result_code(frame.body)
        logger.debug(f"Identity service returned code {result.code}: {result.message!r}")
        return result

    async def _read_result(self, transport: Transport, request: str) -> ResultCode:
        """Read frames until a RESULT_CODE arrives, skipping change notifications."""
        while True:
            frame = await transport.read_frame()
            if frame.type == IDENTITY_RESULT_CODE:
                return self._result(frame)
            if frame.type == IDENTITY_UPDATE:
                logger.debug(f"Ignoring ego update received while waiting for {request} result")
                continue
            raise ProtocolError(f"unexpected message type {frame.type} in reply to {request}")

    async def _read_ego(
        self,
        transport: Transport,
        request: str,
        name: Optional[str] = None,
    ) -> Optional[Default]:
        """
        Read the reply to a request that is answered with an ego.

        Once :meth:`list` has subscribed this connection, the service also
        sends an UPDATE for every ego that is created, renamed or deleted.
        Those are skipped: an UPDATE only counts as the reply when it names
        the ego that was asked for (``name``), or, for requests without a
        name, when the connection is not subscribed.

        Args:
            transport: Transport of the running conversation
            request: Request name for log and error messages
            name: Ego the request asked for, if any

        Returns:
            The ego, or None if the service answered "not found"
        """
        while True:
            frame = await transport.read_frame()
            if frame.type in (IDENTITY_GET_DEFAULT, IDENTITY_SET_DEFAULT) and name is None:
                return deserialize_default(frame.body, frame.type)

            if frame.type == IDENTITY_UPDATE:
                update = deserialize_update(frame.body)
                if update.private_key is not None and (
                    update.name == name if name is not None else not self._subscribed
                ):
                    return Default(update.name, update.private_key)
                logger.debug(f"Ignoring update for ego '{update.name}' while waiting for {request} reply")
                continue

            if frame.type != IDENTITY_RESULT_CODE:
                raise ProtocolError(f"unexpected message type {frame.type} in reply to {request}")

            result = self._result(frame)
            if result.code == RESULT_NOT_FOUND:
                return None
            if result.code == RESULT_OK:
                raise ProtocolError(f"{request} succeeded without returning an ego")
            raise ResultError(result.code, result.message)

    async def list(self) -> Dict[str, PrivateKey]:
        """
        Fetch every ego known to the service.

        Returns:
            Mapping of ego name to private key
        """
        egos: Dict[str, PrivateKey] = {}
        async with self._conversation() as transport:
            logger.debug("Requesting ego list")
            await transport.write_message(serialize_start())
            self._subscribed = True
            while True:
                frame = await transport.read_frame()
                if frame.type == IDENTITY_RESULT_CODE:
                    result = self._result(frame)
                    if result.code != RESULT_OK:
                        raise ResultError(result.code, result.message)
                    raise ProtocolError("ego list ended with a result code instead of an update")
                if frame.type != IDENTITY_UPDATE:
                    raise ProtocolError(f"unexpected message type {frame.type} while listing egos")

                update = deserialize_update(frame.body)
                if update.private_key is not None:
                    egos[update.name] = update.private_key
                if update.end_of_list:
                    return egos

    async def lookup(self, name: str) -> Optional[PrivateKey]:
        """Return the private key of ego ``name``, or None if there is none."""
        async with self._conversation() as transport:
            logger.debug(f"Looking up ego '{name}'")
            await transport.write_message(serialize_lookup(name))
            ego = await self._read_ego(transport, "lookup", name=name)
        return ego.private_key if ego is not None else None

    async def create(
        self,
        name: str,
        private_key: Optional[PrivateKey] = None,
        key_type: KeyType = KeyType.ECDSA,
    ) -> bool:
        """
        Create a new ego.

        Args:
            name: Name of the ego
            private_key: Key to use; a fresh one of ``key_type`` is generated
                when omitted
            key_type: Algorithm for the generated key

        Returns:
            True if the ego was created, False if one with that name exists

        Raises:
            ResultError: For any other failure reported by the service
        """
        if private_key is None:
            private_key = PrivateKey.generate(key_type)

        async with self._conversation() as transport:
            logger.debug(f"Creating ego '{name}'")
            await transport.write_message(serialize_create(name, private_key))
            result = await self._read_result(transport, "create")

        if result.code == RESULT_OK:
            return True
        if result.code == RESULT_ALREADY_EXISTS:
            return False
        raise ResultError(result.code, result.message)

    async def get_default(self, service: str) -> Optional[Ego]:
        """Return the ego bound to ``service``, or None if there is none."""
        async with self._conversation() as transport:
            logger.debug(f"Requesting default ego for '{service}'")
            await transport.write_message(serialize_get_default(service))
            default = await self._read_ego(transport, "get_default")

        if default is None:
            return None
        return Ego(default.name, default.private_key)

    async def set_default(self, service: str, ego: Ego) -> None:
        """Bind ``ego`` as the default identity of ``service``."""
        async with self._conversation() as transport:
            logger.debug(f"Setting default ego for '{service}' to '{ego.name}'")
            await transport.write_message(serialize_set_default(service, ego.private_key))
            result = await self._read_result(transport, "set_default")

        if result.code != RESULT_OK:
            raise ResultError(result.code, result.message)

    async def rename(self, old_name: str, new_name: str) -> None:
        async with self._conversation() as transport:
            logger.debug(f"Renaming ego '{old_name}' to '{new_name}'")
            await transport.write_message(serialize_rename(old_name, new_name))
            result = await self._read_result(transport, "rename")

        if result.code != RESULT_OK:
            raise ResultError(result.code, result.message)

    async def delete(self, name: str) -> None:
        async with self._conversation() as transport:
            logger.debug(f"Deleting ego '{name}'")
            await transport.write_message(serialize_delete(name))
            result = await self._read_result(transport, "delete")

        if result.code != RESULT_OK:
            raise ResultError(result.code, result.message)
