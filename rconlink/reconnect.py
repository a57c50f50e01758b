# -*- coding: utf-8 -*-

"""RCON connections which survive being disconnected.

:class:`ReconnectingRCON` has the same interface as
:class:`rconlink.connection.RCON` but whenever a command fails because the
connection was lost, it starts reconnecting in the background. Until the
connection is re-established every command fails immediately with
:exc:`rconlink.RCONBusyReconnectingError` instead of the underlying
communication error. After that, commands work again without the caller
having to do anything.
"""

import collections
import enum
import logging
import threading

import rconlink
import rconlink.connection


log = logging.getLogger(__name__)


class Status(enum.Enum):
    """Connection status of a :class:`ReconnectingRCON`."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STOPPED = "stopped"


# The value is the RCON connection when connected and the reason for
# being disconnected when disconnected.
_Status = collections.namedtuple("_Status", ("state", "value"))


class ReconnectingRCON(object):
    """RCON connection that reconnects automatically.

    The parameters are the same as for :class:`rconlink.connection.RCON`.
    The ``reconnect_delay`` setting controls how long to wait between
    failed reconnection attempts.

    .. note::
        Only communication errors trigger a reconnect. Other errors, such
        as a command being too long or a malformed response, are raised
        as usual as reconnecting won't fix them.
    """

    def __init__(self, address, password, settings=None):
        self._address = address
        self._password = password
        self._settings = (settings if settings
                          else rconlink.connection.Settings())
        self._lock = threading.Lock()
        self._status = None
        # The connection currently installed, readable without the lock so
        # that closing can interrupt a command in progress.
        self._connection = None
        self._shutdown = threading.Event()
        self._reconnect_thread = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, type_, value, traceback):
        self.close()

    def __call__(self, command):
        """Shorthand for :meth:`execute`."""
        return self.execute(command)

    @property
    def status(self):
        """The current :class:`Status`.

        ``None`` until :meth:`connect` has succeeded.
        """
        with self._lock:
            return self._status.state if self._status else None

    @property
    def reason(self):
        """Why the connection was lost, if currently reconnecting."""
        with self._lock:
            if self._status and self._status.state is Status.DISCONNECTED:
                return self._status.value
            return None

    def _open(self):
        return rconlink.connection.connect(
            self._address, self._password, self._settings)

    def connect(self):
        """Make the initial connection.

        Unlike reconnection attempts, failing to make the initial
        connection raises the error, as documented by
        :meth:`rconlink.connection.RCON.connect`.
        """
        with self._lock:
            if self._status is not None:
                raise rconlink.RCONError("Must not be connected")
            self._install(self._open())

    def execute(self, command):
        """Execute a command on the server.

        Commands are serialised; if another thread is already executing a
        command then this blocks until it completes.

        :raises rconlink.RCONBusyReconnectingError: if the connection has
            been lost. This is raised both for the command that discovered
            the loss and every command issued until reconnected.
        :raises rconlink.RCONCommunicationError: if the connection has been
            closed or was never made.

        See :meth:`rconlink.connection.RCON.execute` for other exceptions
        which may be raised.

        :returns: the response to the command as a string.
        """
        with self._lock:
            if self._status is None:
                raise rconlink.RCONCommunicationError("Not connected")
            state, value = self._status
            if state is Status.DISCONNECTED:
                raise rconlink.RCONBusyReconnectingError(value)
            elif state is Status.STOPPED:
                raise rconlink.RCONCommunicationError("Connection closed")
            try:
                return value.execute(command)
            except rconlink.RCONCommunicationError as exc:
                if self._shutdown.is_set():
                    raise rconlink.RCONCommunicationError(
                        "Connection closed") from exc
                reason = str(exc)
                log.warning("Lost connection: %s", reason)
                self._status = _Status(Status.DISCONNECTED, reason)
                self._connection = None
                value.close()
                self._start_reconnect()
                raise rconlink.RCONBusyReconnectingError(reason) from exc

    def _install(self, rcon):
        # Must hold the lock.
        self._status = _Status(Status.CONNECTED, rcon)
        self._connection = rcon

    def _start_reconnect(self):
        # Only called whilst holding the lock, on the transition from
        # connected to disconnected, so at most one thread runs at a time.
        self._reconnect_thread = threading.Thread(
            target=self._reconnect_loop, name="rcon-reconnect")
        self._reconnect_thread.daemon = True
        self._reconnect_thread.start()

    def _reconnect_loop(self):
        attempt = 0
        while not self._shutdown.is_set():
            attempt += 1
            try:
                rcon = self._open()
            except rconlink.RCONError as exc:
                log.warning("Reconnection attempt %i failed: %s",
                            attempt, exc)
                self._shutdown.wait(self._settings.reconnect_delay)
                continue
            except Exception:  # pylint: disable=broad-except
                log.exception("Reconnection attempt %i failed unexpectedly",
                              attempt)
                self._shutdown.wait(self._settings.reconnect_delay)
                continue
            with self._lock:
                if self._status.state is Status.STOPPED:
                    log.debug("Closed whilst reconnecting; "
                              "discarding new connection")
                    rcon.close()
                else:
                    log.info("Reconnected after %i attempt(s)", attempt)
                    self._install(rcon)
            return

    def close(self):
        """Close the connection.

        Any reconnection in progress is abandoned. This waits for the
        reconnection thread to exit, which may take up to the connect
        timeout if it's in the middle of connecting.

        A command in progress on another thread is interrupted and fails
        with :exc:`rconlink.RCONCommunicationError`.

        It is safe to call this multiple times.
        """
        self._shutdown.set()
        # Closing the connection first releases the lock if a command holds it.
        connection = self._connection
        if connection is not None:
            connection.close()
        with self._lock:
            previous = self._status
            self._status = _Status(Status.STOPPED, None)
            self._connection = None
        if previous is not None and previous.state is Status.CONNECTED:
            previous.value.close()
        if self._reconnect_thread is not None:
            self._reconnect_thread.join()
