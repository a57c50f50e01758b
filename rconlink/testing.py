"""Utilities for testing."""

import copy
import functools
import select
import socketserver
import threading

import rconlink
from rconlink.messages import RCONMessage


class UnexpectedRCONMessage(Exception):
    """Raised when an RCON request wasn't expected."""


class ExpectedRCONMessage(RCONMessage):
    """Request expected by :class:`TestRCONServer`.

    This class should not be instantiated directly. Instead use the
    :meth:`TestRCONServer.expect` factory to create them.

    Instances of this class can be configured to respond to the request
    using :meth:`respond`, :meth:`respond_close`, etc..
    """

    def __init__(self, id_, type_, body):
        RCONMessage.__init__(self, id_, type_, body)
        self.responses = []

    def respond(self, id_, type_, body):
        """Respond to the request with a message.

        The parameters for this method are the same as those given to
        the initialiser of :class:`rconlink.messages.RCONMessage`. The
        created message will be encoded and sent to the client.
        """
        response = functools.partial(
            _TestRCONHandler.send_message,
            message=RCONMessage(id_, type_, body),
        )
        self.responses.append(response)
        return self

    def respond_bytes(self, data):
        """Respond with raw bytes.

        This allows sending frames which :class:`RCONMessage` can't
        represent, such as ones with an unknown type.
        """
        self.responses.append(functools.partial(
            _TestRCONHandler.send_bytes, data=data))
        return self

    def respond_close(self):
        """Respond by closing the connection."""
        self.responses.append(_TestRCONHandler.close)
        return self


class _TestRCONHandler(socketserver.BaseRequestHandler):
    """Request handler for :class:`TestRCONServer`."""

    def _decode_messages(self):
        """Decode buffer into discrete RCON messages.

        This may consume the buffer, either in whole or part.

        :returns: an iterator of :class:`rconlink.messages.RCONMessage`s.
        """
        while self._buffer and not self._closed:
            try:
                message, self._buffer = \
                    RCONMessage.from_buffer(self._buffer)
            except rconlink.RCONIncompleteMessageError:
                return
            else:
                yield message

    def _handle_request(self, message):
        """Handle individual RCON requests.

        Given a RCON request this will check that it matches the next
        expected request by comparing the request's ID, type and body
        attributes. If they all match, then each of the responses
        configured for the request is called.

        :raises UnexpectedRCONMessage: if given message does not match
            the expected request.
        """
        self.server.received.append(message)
        if not self._expectations:
            raise UnexpectedRCONMessage(
                "Unexpected message {!r}".format(message))
        expected = self._expectations.pop(0)
        for attribute in ["id", "type", "body"]:
            a_message = getattr(message, attribute)
            a_expected = getattr(expected, attribute)
            if a_message != a_expected:
                raise UnexpectedRCONMessage(
                    "Expected {} == {!r}, got {!r}".format(
                        attribute, a_expected, a_message))
        for response in expected.responses:
            if self._closed:
                return
            response(self)

    def send_message(self, message):
        self.send_bytes(message.encode())

    def send_bytes(self, data):
        self.request.sendall(data)

    def close(self):
        self._closed = True
        self.request.close()

    def setup(self):
        self._buffer = b""
        self._closed = False
        self._expectations = self.server.expectations()

    def handle(self):
        """Handle incoming requests.

        This will continually read incoming requests from the connected
        socket assigned to this handler. If the connected client closes
        the connection, or the server is shut down, this method will exit.
        """
        while not self._closed and not self.server.stopping.is_set():
            ready, _, _ = select.select([self.request], [], [], 0.05)
            if not ready:
                continue
            try:
                received = self.request.recv(4096)
            except OSError:
                return
            if not received:
                return
            self._buffer += received
            try:
                for message in self._decode_messages():
                    self._handle_request(message)
            except UnexpectedRCONMessage as exc:
                self.server.errors.append(exc)
                return


class TestRCONServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Stub RCON server for testing.

    This class provides a simple RCON server which can be configured to
    respond to requests in certain ways. The idea is that this can be used
    in testing to fake the responses from a real RCON server.

    Specifically, each instance of this server can be configured to
    :meth:`expect` requests in a certain order. For each expected request
    there can be any number of responses for it. By default each connection
    to the server expects the exact same requests. Calling
    :meth:`next_connection` starts a new set of expectations which apply
    to the next connection made, and all after it.

    All expected requests should be configured *before* connecting the
    client to the server.

    Every request received is recorded in :attr:`received` and any
    mismatched request in :attr:`errors`.

    :param address: the address the server should bind to. By default it
        will use a random port on the loopback interface. The actual
        address in use can be retrieved via the :attr:`server_address`
        attribute.
    """

    __test__ = False
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address=("127.0.0.1", 0)):
        socketserver.TCPServer.__init__(self, address, _TestRCONHandler)
        self._lock = threading.Lock()
        self._scripts = [[]]
        self._connections = 0
        self.received = []
        self.errors = []
        self.stopping = threading.Event()

    @property
    def connections(self):
        """Number of connections accepted so far."""
        with self._lock:
            return self._connections

    def expect(self, id_, type_, body):
        """Expect a RCON request.

        The parameters for this method are the same as those passed to the
        initialiser of :class:`ExpectedRCONMessage`.

        :returns: the corresponding :class:`ExpectedRCONMessage`.
        """
        with self._lock:
            self._scripts[-1].append(ExpectedRCONMessage(id_, type_, body))
            return self._scripts[-1][-1]

    def expect_auth(self, password, accept=True):
        """Expect authentication, accepting or rejecting the password."""
        self.expect(0, RCONMessage.Type.AUTH, password).respond(
            0 if accept else -1, RCONMessage.Type.AUTH_RESPONSE, b"")

    def expect_command(self, id_, command, *parts):
        """Expect a command and the empty command that follows it.

        The command is responded to with each of the given ``parts`` as
        a separate message. The empty command with the next ID is then
        echoed back, ending the response.
        """
        request = self.expect(id_, RCONMessage.Type.EXECCOMMAND, command)
        for part in parts:
            request.respond(id_, RCONMessage.Type.RESPONSE_VALUE, part)
        self.expect(id_ + 1, RCONMessage.Type.EXECCOMMAND, b"").respond(
            id_ + 1, RCONMessage.Type.RESPONSE_VALUE, b"")
        return request

    def next_connection(self):
        """Configure expectations for the next connection."""
        with self._lock:
            self._scripts.append([])

    def expectations(self):
        """Get a copy of the expectations for a new connection.

        :returns: a deep copy of the :class:`ExpectedRCONMessage`s
            configured for the connection.
        """
        with self._lock:
            index = min(self._connections, len(self._scripts) - 1)
            self._connections += 1
            return copy.deepcopy(self._scripts[index])

    def shutdown(self):
        self.stopping.set()
        socketserver.TCPServer.shutdown(self)
