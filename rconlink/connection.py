# -*- coding: utf-8 -*-

"""A single authenticated RCON connection.

Each :class:`RCON` connection is driven by two threads. The thread
calling :meth:`RCON.execute` owns the sending side of the socket, whilst a
background receiver thread owns the receiving side. The two only share a
small amount of state: the ID of the command currently awaiting a response
and a couple of events for signalling between them.

Responses to a command may be split across any number of
``RESPONSE_VALUE`` messages and the protocol gives no indication of when
the last one has been sent. To work around this, once the first part of
a response has arrived, an empty command is sent with the next ID. The
server handles commands in order so when the response to the empty
command arrives all parts of the real response must have been received.

https://developer.valvesoftware.com/wiki/Source_RCON_Protocol#Multiple-packet_Responses
"""

import collections
import functools
import logging
import queue
import select
import socket
import threading
import time

import rconlink
from rconlink.messages import (
    MAX_BODY_SIZE,
    MIN_SIZE,
    SIZE_FIELD,
    RCONMessage,
    next_request_id,
)


log = logging.getLogger(__name__)

DEFAULT_PORT = 27015
#: Request ID meaning no command is waiting for a response.
NO_REQUEST = -1
# How often the receiver thread checks whether it's been asked to stop.
_POLL_INTERVAL = 0.1


_Settings = collections.namedtuple(
    "_Settings",
    (
        "connect_timeout",
        "auth_delay",
        "response_timeout",
        "strict_ids",
        "reconnect_delay",
    )
)


class Settings(_Settings):
    """Connection options.

    All options are keyword arguments with sensible defaults, so typically
    only a few need to be given, e.g. ``Settings(auth_delay=0.5)``.

    :ivar connect_timeout: seconds to wait when connecting to each address
        the server's host name resolves to. Defaults to ten seconds.
    :ivar auth_delay: seconds to wait between connecting and sending the
        password. Some servers drop requests sent immediately after the
        connection is made. Defaults to ``None``, meaning no delay.
    :ivar response_timeout: seconds to wait for the response to the
        password or to a command before raising
        :exc:`rconlink.RCONTimeoutError`. Defaults to ``None``, meaning
        wait forever.
    :ivar bool strict_ids: if set, receiving a response whose ID doesn't
        belong to the pending command fails that command with
        :exc:`rconlink.RCONDesynchronizedError`. Otherwise such responses
        are logged and skipped, which is the default.
    :ivar reconnect_delay: seconds :class:`rconlink.reconnect.ReconnectingRCON`
        waits between reconnection attempts. Defaults to one second.
    """

    __slots__ = ()

    def __new__(cls, connect_timeout=10.0, auth_delay=None,
                response_timeout=None, strict_ids=False, reconnect_delay=1.0):
        return super(Settings, cls).__new__(
            cls,
            connect_timeout,
            auth_delay,
            response_timeout,
            strict_ids,
            reconnect_delay,
        )


def parse_address(address):
    """Parse an address into its host and port.

    The address can either be a string like ``foo:1234`` or a tuple
    like ``("foo", 1234)``. If the port is not given it defaults to
    27015. IPv6 addresses with a port must be enclosed in square brackets,
    e.g. ``[::1]:27015``.

    .. note::
        This doesn't check that the host is a valid address or name. That
        only happens once it's resolved.

    :raises rconlink.RCONAddressError: if the address is malformed or the
        port is not a valid port number.

    :returns: a tuple containing the host as a string and the port as
        an integer.
    """
    if isinstance(address, tuple):
        if len(address) != 2:
            raise rconlink.RCONAddressError(
                "Address must be a (host, port) tuple; got {!r}".format(
                    address))
        host, port_string = address
    elif address.startswith("["):
        host, closed, remainder = address[1:].partition("]")
        if not closed or (remainder and not remainder.startswith(":")):
            raise rconlink.RCONAddressError(
                "Malformed IPv6 address {!r}".format(address))
        port_string = remainder[1:]
    elif address.count(":") == 1:
        host, port_string = address.split(":")
    else:
        host, port_string = address, ""
    if not host:
        raise rconlink.RCONAddressError(
            "No host given in address {!r}".format(address))
    if port_string == "" or port_string is None:
        port_string = DEFAULT_PORT
    try:
        port = int(port_string)
    except ValueError:
        raise rconlink.RCONAddressError(
            "Could not parse address port "
            "{!r} as a number".format(port_string)) from None
    if port <= 0 or port > 65535:
        raise rconlink.RCONAddressError(
            "Port number must be in the range 1 to 65535")
    return host, port


def resolve(host, port):
    """Find the socket addresses for a host.

    :raises rconlink.RCONAddressError: if the host can't be resolved.

    :returns: a list of ``(family, type, proto, canonname, sockaddr)``
        tuples as returned by :func:`socket.getaddrinfo`, with all IPv4
        addresses ordered before the IPv6 ones.
    """
    try:
        candidates = socket.getaddrinfo(
            host, port, 0, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except socket.gaierror as exc:
        raise rconlink.RCONAddressError(
            "Couldn't resolve {!r}: {}".format(host, exc)) from exc
    return sorted(candidates,
                  key=lambda candidate: candidate[0] != socket.AF_INET)


def _dial(candidates, timeout):
    """Connect to the first of the given addresses that accepts.

    :param candidates: addresses as returned by :func:`resolve`.
    :param timeout: seconds to wait for each address.

    :raises rconlink.RCONCommunicationError: if none of the addresses
        could be connected to, or there weren't any.

    :returns: the connected socket, in blocking mode.
    """
    error = None
    for family, type_, proto, _, sockaddr in candidates:
        sock = None
        try:
            sock = socket.socket(family, type_, proto)
            sock.settimeout(timeout)
            sock.connect(sockaddr)
        except socket.error as exc:
            log.debug("Couldn't connect to %s: %s", sockaddr, exc)
            if sock is not None:
                sock.close()
            error = exc
            continue
        sock.settimeout(None)
        return sock
    if error is None:
        raise rconlink.RCONCommunicationError(
            "No addresses available to connect to")
    raise rconlink.RCONCommunicationError(
        "Couldn't connect: {}".format(error)) from error


def _send_message(sock, message):
    """Encode and send a message in full."""
    encoded = message.encode()
    log.debug("Sending %r", message)
    try:
        sock.sendall(encoded)
    except socket.error as exc:
        raise rconlink.RCONCommunicationError(
            "Couldn't send {!r}: {}".format(message, exc)) from exc


def _receive_exactly(sock, count):
    chunks = []
    while count:
        try:
            chunk = sock.recv(min(count, 4096))
        except socket.timeout as exc:
            raise rconlink.RCONTimeoutError(
                "Timed out waiting for a response") from exc
        except socket.error as exc:
            raise rconlink.RCONCommunicationError(
                "Couldn't receive: {}".format(exc)) from exc
        if not chunk:
            raise rconlink.RCONCommunicationError(
                "Connection closed by server")
        chunks.append(chunk)
        count -= len(chunk)
    return b"".join(chunks)


def _read_message(sock):
    """Read exactly one message from the socket.

    A size field smaller than the minimum message size means the stream
    can't be framed any more, so it's reported as a communication error
    rather than a message error.
    """
    size = SIZE_FIELD.unpack(_receive_exactly(sock, SIZE_FIELD.size))[0]
    if size < MIN_SIZE:
        raise rconlink.RCONCommunicationError(
            "Invalid message size {}".format(size))
    message = RCONMessage.decode(size, _receive_exactly(sock, size))
    log.debug("Received %r", message)
    return message


class _Correlation(object):
    """State shared between a connection and its receiver thread.

    :ivar first_response: set once any part of the response to the
        pending command has arrived, or the command failed.
    :ivar shutdown: set to stop the receiver thread.
    :ivar stopped: set as soon as the receiver thread starts exiting.
    :ivar responses: completed responses as ``(request_id, result)``
        tuples where ``result`` is either the response text or an
        exception. A ``None`` is put when the receiver thread exits.
    :ivar failure: the communication error that stopped the receiver
        thread, if any.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._request_id = NO_REQUEST
        self.first_response = threading.Event()
        self.shutdown = threading.Event()
        self.stopped = threading.Event()
        self.responses = queue.Queue()
        self.failure = None

    @property
    def request_id(self):
        """ID of the command awaiting a response or :data:`NO_REQUEST`."""
        with self._lock:
            return self._request_id

    def begin(self, request_id):
        with self._lock:
            self.first_response.clear()
            self._request_id = request_id

    def finish(self, request_id):
        """Stop waiting for responses to a command.

        Both the connection and receiver thread may try to finish the same
        command, e.g. when a timeout coincides with the response arriving.
        Only one of them succeeds.

        :returns: ``True`` if ``request_id`` was pending and now isn't.
        """
        with self._lock:
            if self._request_id != request_id:
                return False
            self._request_id = NO_REQUEST
            return True


class _Receiver(threading.Thread):
    """Thread that reads and routes all incoming messages.

    Messages which are part of the response to the pending command are
    collected until the response to the following empty command arrives.
    The complete response is then handed back to the connection via
    :attr:`_Correlation.responses`.

    The thread holds no reference to its :class:`RCON` so that dropping
    the connection without closing it still lets the thread be stopped.
    """

    def __init__(self, sock, correlation, strict_ids=False):
        super(_Receiver, self).__init__(name="rcon-receiver")
        self.daemon = True
        self._socket = sock
        self._correlation = correlation
        self._strict_ids = strict_ids
        self._active_id = NO_REQUEST
        self._parts = []

    def run(self):
        correlation = self._correlation
        try:
            while self._wait_readable():
                try:
                    message = _read_message(self._socket)
                except rconlink.RCONCommunicationError:
                    raise
                except rconlink.RCONUnknownMessageTypeError as exc:
                    self._reject(exc)
                except rconlink.RCONError as exc:
                    # The whole message was consumed so the stream is
                    # still framed correctly; only the command fails.
                    self._fail(correlation.request_id, exc)
                else:
                    self._route(message)
        except rconlink.RCONCommunicationError as exc:
            if correlation.shutdown.is_set():
                log.debug("Receiver stopped: %s", exc)
            else:
                log.info("Receiver failed: %s", exc)
                correlation.failure = exc
        finally:
            correlation.stopped.set()
            correlation.responses.put(None)
            correlation.first_response.set()
            self._socket.close()

    def _wait_readable(self):
        """Wait until the socket is readable.

        :returns: ``True`` once there's something to read or ``False``
            if the thread has been asked to stop.
        """
        while not self._correlation.shutdown.is_set():
            try:
                ready, _, _ = select.select(
                    [self._socket], [], [], _POLL_INTERVAL)
            except (OSError, ValueError) as exc:
                raise rconlink.RCONCommunicationError(
                    "Socket closed: {}".format(exc)) from exc
            if ready:
                return True
        return False

    def _route(self, message):
        original_id = self._correlation.request_id
        if original_id == NO_REQUEST:
            log.debug("Discarding %r; no command pending", message)
            return
        if original_id != self._active_id:
            self._active_id = original_id
            del self._parts[:]
        if self._foreign(original_id, message.id, repr(message)):
            return
        terminator_id = next_request_id(original_id)
        if message.type is not RCONMessage.Type.RESPONSE_VALUE:
            self._fail(original_id, rconlink.RCONUnexpectedMessageError(
                "Expected a response but got {!r}".format(message)))
            return
        if message.id == terminator_id:
            self._deliver(original_id, "".join(self._parts))
        else:
            self._parts.append(message.text)
            self._correlation.first_response.set()

    def _foreign(self, original_id, message_id, description):
        """Apply the ID policy to a message.

        :returns: ``True`` if the message belongs to neither the pending
            command nor its terminator, and so has been dealt with.
        """
        if message_id in (original_id, next_request_id(original_id)):
            return False
        if self._strict_ids:
            self._fail(original_id, rconlink.RCONDesynchronizedError(
                "Got {} whilst waiting for response {}".format(
                    description, original_id)))
        else:
            log.warning("Skipping %s whilst waiting for response %i",
                        description, original_id)
        return True

    def _reject(self, exc):
        # Unknown types are only held against the pending command if the
        # message was meant for it.
        original_id = self._correlation.request_id
        if original_id == NO_REQUEST:
            log.debug("Ignoring %s; no command pending", exc)
        elif not self._foreign(
                original_id, exc.id, "message {} of unknown type {}".format(
                    exc.id, exc.type)):
            self._fail(original_id, exc)

    def _fail(self, request_id, exc):
        if request_id == NO_REQUEST:
            log.debug("Ignoring %s; no command pending", exc)
            return
        self._deliver(request_id, exc)

    def _deliver(self, request_id, result):
        del self._parts[:]
        if self._correlation.finish(request_id):
            # Set before queueing so it can't leak into the next command.
            self._correlation.first_response.set()
            self._correlation.responses.put((request_id, result))


class RCON(object):
    """Represents an RCON connection.

    :param address: the address of the server as either a ``host:port``
        string or a ``(host, port)`` tuple. See :func:`parse_address`.
    :param password: the RCON password.
    :param Settings settings: connection options. If not given the
        defaults are used.

    Connections can be used as context managers, connecting on entry and
    closing on exit:

    .. code-block:: python

        with RCON("localhost:27015", "password") as rcon:
            print(rcon.execute("status"))
    """

    def __init__(self, address, password, settings=None):
        self._address = address
        self._password = password
        self._settings = settings if settings else Settings()
        self._socket = None
        self._correlation = None
        self._receiver = None
        self._request_id = 0
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, type_, value, traceback):
        self.close()

    def __del__(self):
        correlation = getattr(self, "_correlation", None)
        if correlation is not None:
            correlation.shutdown.set()

    def __call__(self, command):
        """Shorthand for :meth:`execute`."""
        return self.execute(command)

    @property
    def connected(self):
        """Determine if a connection has been made.

        .. note::
            This doesn't guarantee that the next command will succeed as
            the server may close the connection at any time.
        """
        return self._socket is not None

    @property
    def closed(self):
        """Determine if the connection has been closed."""
        return self._closed

    @property
    def settings(self):
        return self._settings

    def _ensure(state, value=True,  # pylint: disable=no-self-argument
                error=rconlink.RCONError):
        """Decorator to ensure a connection is in a specific state.

        The wrapped method will raise ``error`` if the named attribute
        is not ``value``.

        Additionally, this decorator will modify the docstring of the
        wrapped function to include a sphinx-style ``:raises:`` directive
        documenting the valid state for the call.
        """

        def decorator(function):  # pylint: disable=missing-docstring

            @functools.wraps(function)
            def wrapper(instance, *args, **kwargs):  # pylint: disable=missing-docstring
                if getattr(instance, state) is not value:
                    raise error("Must {} {}".format(
                        "be" if value else "not be", state))
                return function(instance, *args, **kwargs)

            # pylint: disable=no-member
            if not wrapper.__doc__.endswith("\n"):
                wrapper.__doc__ += "\n"
            wrapper.__doc__ += ("\n:raises {}: {} {}.".format(
                error.__name__, "if not" if value else "if", state))
            # pylint: enable=no-member
            return wrapper

        return decorator

    @_ensure("connected", False)
    @_ensure("closed", False)
    def connect(self):
        """Connect and authenticate with the server.

        The host is resolved and each resulting address is tried in turn,
        IPv4 before IPv6, until a connection is made. Then the password
        is sent and the server's reply is checked. Only once authenticated
        is the receiver thread started.

        If anything fails the socket is closed without anything else
        being sent on it.

        :raises rconlink.RCONAddressError: if the address is invalid or
            can't be resolved.
        :raises rconlink.RCONCommunicationError: if connecting fails or the
            connection is lost whilst authenticating.
        :raises rconlink.RCONUnexpectedMessageError: if the server replies
            to the password with anything other than ``AUTH_RESPONSE``.
        :raises rconlink.RCONAuthenticationError: if the password is wrong.
        """
        host, port = parse_address(self._address)
        log.debug("Connecting to %s:%i", host, port)
        sock = _dial(resolve(host, port), self._settings.connect_timeout)
        try:
            if self._settings.auth_delay:
                time.sleep(self._settings.auth_delay)
            self._authenticate(sock)
        except rconlink.RCONError:
            sock.close()
            raise
        self._socket = sock
        self._correlation = _Correlation()
        self._receiver = _Receiver(
            sock, self._correlation, self._settings.strict_ids)
        self._receiver.start()
        log.info("Connected to %s:%i", host, port)

    def _authenticate(self, sock):
        sock.settimeout(self._settings.response_timeout)
        _send_message(
            sock, RCONMessage(0, RCONMessage.Type.AUTH, self._password))
        response = _read_message(sock)
        sock.settimeout(None)
        if response.type is not RCONMessage.Type.AUTH_RESPONSE:
            raise rconlink.RCONUnexpectedMessageError(
                "Expected an authentication response "
                "but got {!r}".format(response))
        if response.id == -1:
            raise rconlink.RCONAuthenticationError

    def close(self):
        """Close the connection.

        This stops the receiver thread and waits for it to exit. Any
        command waiting for a response on another thread will fail with
        :exc:`rconlink.RCONCommunicationError`.

        It is safe to call this multiple times.
        """
        if self._closed:
            return
        self._closed = True
        if self._socket is None:
            return
        self._correlation.shutdown.set()
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except socket.error as exc:
            log.debug("Couldn't shut down socket: %s", exc)
        self._receiver.join()
        self._socket.close()
        self._socket = None
        log.info("Connection closed")

    def _next_id(self):
        self._request_id = next_request_id(self._request_id)
        return self._request_id

    @staticmethod
    def _remaining(deadline):
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def _terminated(self):
        failure = self._correlation.failure
        if failure is None:
            return rconlink.RCONCommunicationError(
                "Receiving thread terminated")
        error = rconlink.RCONCommunicationError(str(failure))
        error.__cause__ = failure
        return error

    def _discard_stale(self):
        """Throw away responses to commands that timed out."""
        while True:
            try:
                stale = self._correlation.responses.get_nowait()
            except queue.Empty:
                return
            if stale is not None:
                log.debug("Discarding stale response %r", stale)

    @_ensure("connected", error=rconlink.RCONCommunicationError)
    def execute(self, command):
        """Execute a command on the server.

        Only one command runs at a time; concurrent calls from other
        threads block until the previous command has completed.

        :param command: the command to execute as a string.

        :raises rconlink.RCONCommandTooLongError: if the encoded command is
            longer than 1014 bytes. Nothing is sent in this case.
        :raises rconlink.RCONCommunicationError: if the connection is lost
            or was closed.
        :raises rconlink.RCONTimeoutError: if the configured response
            timeout is reached.
        :raises rconlink.RCONMessageError: if a part of the response isn't
            valid UTF-8.
        :raises rconlink.RCONUnexpectedMessageError: if the server responds
            with anything other than ``RESPONSE_VALUE`` messages.
        :raises rconlink.RCONDesynchronizedError: if strict ID checking is
            enabled and a response to some other command arrives.

        :returns: the response as a string, all parts joined in the order
            they were received.
        """
        request = RCONMessage(0, RCONMessage.Type.EXECCOMMAND, command)
        if len(request.body) > MAX_BODY_SIZE:
            raise rconlink.RCONCommandTooLongError(
                "Command is {} bytes; at most {} allowed".format(
                    len(request.body), MAX_BODY_SIZE))
        timeout = self._settings.response_timeout
        with self._lock:
            sock = self._socket
            correlation = self._correlation
            deadline = None if timeout is None else time.monotonic() + timeout
            self._discard_stale()
            request.id = self._next_id()
            correlation.begin(request.id)
            try:
                if correlation.stopped.is_set():
                    raise self._terminated()
                return self._exchange(sock, request, deadline)
            finally:
                correlation.finish(request.id)

    def _exchange(self, sock, request, deadline):
        correlation = self._correlation
        _send_message(sock, request)
        # Some servers misbehave if the empty command is sent before
        # they've started responding to the real one.
        if not correlation.first_response.wait(self._remaining(deadline)):
            if correlation.finish(request.id):
                raise rconlink.RCONTimeoutError(
                    "Timed out waiting for a response to {!r}".format(
                        request))
        if correlation.request_id == request.id:
            terminator = RCONMessage(
                self._next_id(), RCONMessage.Type.EXECCOMMAND, b"")
            _send_message(sock, terminator)
        return self._collect(request, deadline)

    def _collect(self, request, deadline):
        correlation = self._correlation
        while True:
            try:
                item = correlation.responses.get(
                    timeout=self._remaining(deadline))
            except queue.Empty:
                if correlation.finish(request.id):
                    raise rconlink.RCONTimeoutError(
                        "Timed out waiting for a response to {!r}".format(
                            request)) from None
                # Response arrived just as the timeout was reached.
                continue
            if item is None:
                raise self._terminated()
            response_id, result = item
            if response_id != request.id:
                log.debug("Discarding stale response to %i", response_id)
                continue
            if isinstance(result, Exception):
                raise result
            return result

    del _ensure


def connect(address, password, settings=None):
    """Create an authenticated connection.

    The parameters are the same as for :class:`RCON`.

    :returns: the connected :class:`RCON`.
    """
    rcon = RCON(address, password, settings)
    rcon.connect()
    return rcon
