# -*- coding: utf-8 -*-

"""Encoding and decoding of RCON messages.

Each message on the wire looks like this, all integers being signed,
32-bit and little-endian::

    +------+----+------+------------+---------+
    | size | id | type |    body    | 0x00 00 |
    +------+----+------+------------+---------+

``size`` counts every byte that follows it, so for a body of ``n`` bytes
it's always ``n + 10``.

https://developer.valvesoftware.com/wiki/Source_RCON_Protocol
"""

import enum
import logging
import struct

import rconlink


log = logging.getLogger(__name__)

SIZE_FIELD = struct.Struct("<i")
HEADER = struct.Struct("<ii")
TERMINATOR = b"\x00\x00"
#: Largest body that can be sent; a frame may not exceed 1024 bytes.
MAX_BODY_SIZE = 1024 - HEADER.size - len(TERMINATOR)
MIN_SIZE = HEADER.size + len(TERMINATOR)
MAX_REQUEST_ID = 2 ** 31 - 1


def next_request_id(current):
    """Get the request ID that follows ``current``.

    IDs are always strictly positive. Zero is used by authentication
    requests and negative IDs are used to mean no request at all, so
    once the largest signed 32-bit integer is reached this wraps around
    to one.
    """
    if current >= MAX_REQUEST_ID or current < 0:
        return 1
    return current + 1


class RCONMessage(object):
    """Represents a RCON request or response."""

    ENCODING = "utf-8"

    class Type(enum.IntEnum):
        """Message types corresponding to ``SERVERDATA_`` constants."""

        RESPONSE_VALUE = 0
        AUTH_RESPONSE = 2
        EXECCOMMAND = 2
        AUTH = 3

    def __init__(self, id_, type_, body_or_text):
        self.id = int(id_)
        self.type = self.Type(type_)
        if isinstance(body_or_text, bytes):
            self.body = body_or_text
        else:
            self.body = b""
            self.text = body_or_text

    def __repr__(self):
        return ("<{0.__class__.__name__} "
                "{0.id} {0.type.name} {1}B>").format(self, len(self.body))

    def __eq__(self, other):
        if not isinstance(other, RCONMessage):
            return NotImplemented
        return ((self.id, self.type, self.body)
                == (other.id, other.type, other.body))

    def __ne__(self, other):
        equal = self.__eq__(other)
        if equal is NotImplemented:
            return equal
        return not equal

    __hash__ = None

    @property
    def text(self):
        """Get the body of the message as Unicode.

        :raises UnicodeDecodeError: if the body isn't valid UTF-8.
        """
        return self.body.decode(self.ENCODING)

    @text.setter
    def text(self, text):
        """Set the body of the message from a Unicode string."""
        self.body = text.encode(self.ENCODING)

    def encode(self):
        """Encode message to a bytestring.

        :raises rconlink.RCONCommandTooLongError: if the body is longer
            than :data:`MAX_BODY_SIZE` bytes.
        """
        if len(self.body) > MAX_BODY_SIZE:
            raise rconlink.RCONCommandTooLongError(
                "Body is {} bytes; at most {} allowed".format(
                    len(self.body), MAX_BODY_SIZE))
        size = len(self.body) + MIN_SIZE
        return (SIZE_FIELD.pack(size)
                + HEADER.pack(self.id, self.type)
                + self.body + TERMINATOR)

    @classmethod
    def decode(cls, size, payload):
        """Decode a message given its size field and the bytes after it.

        :param int size: the value of the size field which precedes
            the message on the wire.
        :param bytes payload: the ``size`` bytes following the size field.

        :raises rconlink.RCONMessageError: if the message is malformed or
            the body isn't valid UTF-8.
        :raises rconlink.RCONUnknownMessageTypeError: if the message type
            is not one of :class:`RCONMessage.Type`.

        :returns: the decoded :class:`RCONMessage`.
        """
        if size < MIN_SIZE:
            raise rconlink.RCONMessageError(
                "Message size {} is less than the minimum of {}".format(
                    size, MIN_SIZE))
        if len(payload) < size:
            raise rconlink.RCONMessageError(
                "Message is {} bytes long but got {}".format(
                    size, len(payload)))
        id_, type_ = HEADER.unpack_from(payload)
        body = payload[HEADER.size:size - len(TERMINATOR)]
        try:
            body.decode(cls.ENCODING)
        except UnicodeDecodeError as exc:
            raise rconlink.RCONMessageError(
                "Couldn't decode message body: {}".format(exc)) from exc
        try:
            type_ = cls.Type(type_)
        except ValueError:
            raise rconlink.RCONUnknownMessageTypeError(id_, type_) from None
        return cls(id_, type_, body)

    @classmethod
    def from_buffer(cls, buffer_):
        """Decode a message from the start of a bytestring.

        If the buffer contains more than a single message then this must
        be called multiple times.

        :raises rconlink.RCONIncompleteMessageError: if the buffer
            doesn't contain a whole message yet.

        :returns: a tuple containing the decoded :class:`RCONMessage` and
            the remnants of the buffer. If the buffer contained exactly one
            message then the remaining buffer will be empty.
        """
        if len(buffer_) < SIZE_FIELD.size:
            raise rconlink.RCONIncompleteMessageError(
                "Need at least {} bytes; got {}".format(
                    SIZE_FIELD.size, len(buffer_)))
        size = SIZE_FIELD.unpack_from(buffer_)[0]
        raw_message = buffer_[SIZE_FIELD.size:]
        if size >= MIN_SIZE and len(raw_message) < size:
            raise rconlink.RCONIncompleteMessageError(
                "Message is {} bytes long but got {}".format(
                    size, len(raw_message)))
        message = cls.decode(size, raw_message[:size])
        return message, raw_message[size:]
