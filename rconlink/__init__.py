# -*- coding: utf-8 -*-

"""Reconnecting client for the Source remote console (RCON) protocol.

The package is split up as follows:

* :mod:`rconlink.messages` -- encoding and decoding of the wire frames.
* :mod:`rconlink.connection` -- a single authenticated connection,
  :class:`rconlink.connection.RCON`.
* :mod:`rconlink.reconnect` -- a wrapper around :class:`RCON` which
  transparently re-establishes lost connections,
  :class:`rconlink.reconnect.ReconnectingRCON`.
* :mod:`rconlink.shell` -- command-line entry point and interactive shell.

All exceptions raised by the package derive from :exc:`RCONError` and are
defined here.
"""

__version__ = "0.3.0"


class RCONError(Exception):
    """Base exception for all RCON-related errors."""


class RCONAddressError(RCONError, ValueError):
    """Raised when a server address can't be parsed or resolved."""


class RCONCommunicationError(RCONError):
    """Used for propagating socket-related errors.

    Anything that goes wrong with the underlying transport -- failing to
    connect, the peer resetting or closing the connection, reads or writes
    failing -- is reported as this exception. The original
    :exc:`socket.error` is available as ``__cause__``.
    """


class RCONTimeoutError(RCONCommunicationError):
    """Raised when a timeout occurs waiting for a response."""


class RCONCommandTooLongError(RCONError):
    """Raised when a message body exceeds the protocol limit of 1014 bytes.

    This is always raised before anything is written to the socket.
    """


class RCONMessageError(RCONError):
    """Raised for errors encoding or decoding RCON messages."""


class RCONIncompleteMessageError(RCONMessageError):
    """Raised when a buffer doesn't yet contain a whole message."""


class RCONUnexpectedMessageError(RCONError):
    """Raised when the server sends a message of the wrong type."""


class RCONUnknownMessageTypeError(RCONUnexpectedMessageError):
    """Raised when a message's type isn't a known RCON type at all.

    :ivar int id: ID of the offending message.
    :ivar int type: the unrecognised type value.
    """

    def __init__(self, id_, type_):
        super(RCONUnknownMessageTypeError, self).__init__(
            "Unknown message type {} for message {}".format(type_, id_))
        self.id = id_
        self.type = type_


class RCONAuthenticationError(RCONError):
    """Raised when the server rejects the password."""

    def __init__(self, message="Wrong password"):
        super(RCONAuthenticationError, self).__init__(message)


class RCONDesynchronizedError(RCONError):
    """Raised when a response ID doesn't belong to the pending command.

    Only raised when strict ID checking is enabled. See
    :class:`rconlink.connection.Settings`.
    """


class RCONBusyReconnectingError(RCONError):
    """Raised by :class:`rconlink.reconnect.ReconnectingRCON` whilst it's
    trying to re-establish a lost connection.

    :ivar str reason: description of the communication error that caused
        the connection to be dropped.
    """

    def __init__(self, reason):
        super(RCONBusyReconnectingError, self).__init__(
            "Busy reconnecting: {}".format(reason))
        self.reason = reason
