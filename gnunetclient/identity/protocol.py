"""Binary messages of the identity service.

All lengths count the string's NUL terminator. Private keys travel in the
36-byte wire form (type tag + body).

Client to service:
    START        (empty)
    LOOKUP       name\\0
    CREATE       name_len:u16  reserved:u16  key[36]  name\\0
    GET_DEFAULT  name_len:u16  reserved:u16  service\\0
    SET_DEFAULT  name_len:u16  reserved:u16  key[36]  service\\0
    RENAME       old_len:u16   new_len:u16   old\\0  new\\0
    DELETE       name_len:u16  reserved:u16  name\\0

Service to client:
    UPDATE       name_len:u16  end_of_list:u16  key[36]  name[name_len]
    RESULT_CODE  code:u32  message\\0
    DEFAULT      name_len:u16  reserved:u16  key[36]  ego\\0
                 (the reply to GET_DEFAULT, sent as type SET_DEFAULT or GET_DEFAULT)
"""

from dataclasses import dataclass
from typing import Optional

from gnunetclient.core.codec import MessageReader, MessageWriter
from gnunetclient.crypto.keys import WIRE_KEY_SIZE, PrivateKey
from gnunetclient.errors import DeserializationError, ProtocolError

IDENTITY_START = 624
IDENTITY_RESULT_CODE = 625
IDENTITY_UPDATE = 626
IDENTITY_GET_DEFAULT = 627
IDENTITY_SET_DEFAULT = 628
IDENTITY_CREATE = 629
IDENTITY_RENAME = 630
IDENTITY_DELETE = 631
IDENTITY_LOOKUP = 632

# Result codes with a meaning beyond "failed"
RESULT_OK = 0
RESULT_ALREADY_EXISTS = 1
RESULT_NOT_FOUND = 99999

# end_of_list values
NO = 0
YES = 1


@dataclass
class Update:
    """
    One ego announced by the service.

    ``private_key`` is None for the bare end-of-list marker, which carries
    no name.
    """
    name: str
    end_of_list: bool
    private_key: Optional[PrivateKey]


@dataclass
class ResultCode:
    code: int
    message: str


@dataclass
class Default:
    """The ego bound to a service, as returned for GET_DEFAULT."""
    name: str
    private_key: PrivateKey


def _name_length(text: str) -> int:
    return len(text.encode("utf-8")) + 1


def serialize_start() -> bytes:
    return MessageWriter().frame(IDENTITY_START)


def serialize_lookup(name: str) -> bytes:
    return MessageWriter().write_zstring(name).frame(IDENTITY_LOOKUP)


def serialize_create(name: str, private_key: PrivateKey) -> bytes:
    """
    Serialize a CREATE request.

    Args:
        name: Name of the new ego
        private_key: Key the ego will use

    Returns:
        Complete frame
    """
    return (
        MessageWriter()
        .write_u16(_name_length(name))
        .write_u16(0)
        .write_bytes(private_key.to_wire())
        .write_zstring(name)
        .frame(IDENTITY_CREATE)
    )


def serialize_get_default(service: str) -> bytes:
    return (
        MessageWriter()
        .write_u16(_name_length(service))
        .write_u16(0)
        .write_zstring(service)
        .frame(IDENTITY_GET_DEFAULT)
    )


def serialize_set_default(service: str, private_key: PrivateKey) -> bytes:
    return (
        MessageWriter()
        .write_u16(_name_length(service))
        .write_u16(0)
        .write_bytes(private_key.to_wire())
        .write_zstring(service)
        .frame(IDENTITY_SET_DEFAULT)
    )


def serialize_rename(old_name: str, new_name: str) -> bytes:
    return (
        MessageWriter()
        .write_u16(_name_length(old_name))
        .write_u16(_name_length(new_name))
        .write_zstring(old_name)
        .write_zstring(new_name)
        .frame(IDENTITY_RENAME)
    )


def serialize_delete(name: str) -> bytes:
    return (
        MessageWriter()
        .write_u16(_name_length(name))
        .write_u16(0)
        .write_zstring(name)
        .frame(IDENTITY_DELETE)
    )


def serialize_update(name: str, private_key: Optional[PrivateKey], end_of_list: bool = False) -> bytes:
    """
    Serialize an UPDATE as the service sends it.

    An empty ``name`` produces the bare end-of-list form (``name_len`` 0,
    zeroed key).
    """
    writer = MessageWriter()
    if name:
        writer.write_u16(_name_length(name))
    else:
        writer.write_u16(0)
    writer.write_u16(YES if end_of_list else NO)
    writer.write_bytes(private_key.to_wire() if private_key is not None else bytes(WIRE_KEY_SIZE))
    if name:
        writer.write_zstring(name)
    return writer.frame(IDENTITY_UPDATE)


def serialize_result_code(code: int, message: str = "") -> bytes:
    return MessageWriter().write_u32(code).write_zstring(message).frame(IDENTITY_RESULT_CODE)


def deserialize_update(body: bytes) -> Update:
    """
    Parse the body of an UPDATE frame.

    Raises:
        ProtocolError: If the body is truncated or the key tag is unknown
    """
    reader = MessageReader(body, IDENTITY_UPDATE)
    name_len = reader.read_u16()
    end_of_list = reader.read_u16() != NO
    key_bytes = reader.read_bytes(WIRE_KEY_SIZE)
    name = reader.read_zstring(name_len)

    private_key = None
    if name_len:
        try:
            private_key = PrivateKey.from_wire(key_bytes)
        except DeserializationError as e:
            raise ProtocolError(f"invalid private key for ego '{name}': {e}") from e

    return Update(name=name, end_of_list=end_of_list, private_key=private_key)


def deserialize_result_code(body: bytes) -> ResultCode:
    """Parse the body of a RESULT_CODE frame; the message may be absent."""
    reader = MessageReader(body, IDENTITY_RESULT_CODE)
    code = reader.read_u32()
    message = reader.read_zstring() if reader.remaining else ""
    return ResultCode(code=code, message=message)


def serialize_default(name: str, private_key: PrivateKey, msg_type: int = IDENTITY_SET_DEFAULT) -> bytes:
    """Serialize the service's answer to GET_DEFAULT."""
    return (
        MessageWriter()
        .write_u16(_name_length(name))
        .write_u16(0)
        .write_bytes(private_key.to_wire())
        .write_zstring(name)
        .frame(msg_type)
    )


def deserialize_default(body: bytes, msg_type: int = IDENTITY_SET_DEFAULT) -> Default:
    """
    Parse the answer to GET_DEFAULT.

    Raises:
        ProtocolError: If the body is truncated or the key tag is unknown
    """
    reader = MessageReader(body, msg_type)
    name_len = reader.read_u16()
    reader.read_u16()
    key_bytes = reader.read_bytes(WIRE_KEY_SIZE)
    name = reader.read_zstring(name_len)
    try:
        private_key = PrivateKey.from_wire(key_bytes)
    except DeserializationError as e:
        raise ProtocolError(f"invalid private key for default ego '{name}': {e}") from e
    return Default(name=name, private_key=private_key)
