# -*- coding: utf-8 -*-

"""Command-line RCON client."""

import argparse
import cmd
import getpass
import logging
import shlex
import sys
import textwrap

import docopt

import rconlink
import rconlink.connection
import rconlink.reconnect


log = logging.getLogger(__name__)
# ``{program}`` is filled in by :func:`_main`.
_USAGE = """
Talk to a game server over RCON.

Usage:
  {program} [-v]
  {program} ADDRESS [-p PASSWORD] [-v]
  {program} ADDRESS -p PASSWORD [-v] -e COMMAND

Arguments:
  ADDRESS       HOST[:PORT] of the server; IPv6 hosts go in brackets.
                The port defaults to 27015.

Options:
  -h --help     Print this message.
  -p PASSWORD --password=PASSWORD
                RCON password. Prompted for if a shell is started
                without one.
  -e COMMAND --execute=COMMAND
                Run COMMAND, print what the server says and exit.
  -v --verbose  Write debug logs, including every frame, to stderr.

Without --execute an interactive session is started. Lines typed are
sent as commands; lines starting with ! control the session itself
(type help for a list). A dropped connection is re-established in the
background.
"""


def execute(address, password, command, settings=None):
    """Run a single command on a fresh connection.

    A connection is opened and authenticated, used for ``command`` and
    closed again before returning.

    :param address: ``host:port`` string or ``(host, port)`` tuple, as
        accepted by :func:`rconlink.connection.parse_address`.
    :param str password: the RCON password.
    :param str command: what to run.
    :param settings: optional :class:`rconlink.connection.Settings`.

    :raises rconlink.RCONError: whatever went wrong first.

    :returns: the server's reply.
    """
    with rconlink.connection.RCON(address, password, settings) as rcon:
        return rcon.execute(command)


class _RCONShell(cmd.Cmd):
    """Line-oriented RCON session.

    Anything typed goes to the server over a
    :class:`rconlink.reconnect.ReconnectingRCON`. Lines beginning with
    ``!`` (or ``shell``) are session commands handled locally by the
    ``do_shell_*`` methods.
    """

    _INITIAL_PROMPT = "RCON ] "
    _HELP_TEXT = textwrap.dedent("""
        COMMAND [ARGS...]             Send a command to the server.
        !connect HOST[:PORT] [PASS]   Open a session with a server.
        !disconnect                   Close the current session.
        !exit                         Leave the shell.
        """).strip("\n")

    def __init__(self, settings=None):
        super(_RCONShell, self).__init__()
        self.prompt = self._INITIAL_PROMPT
        self._rcon = None
        self._settings = settings

    def _connect(self, address, password):
        """Replace the current session with one to ``address``.

        Failure to connect or authenticate is reported and leaves the
        shell disconnected.

        :param address: a ``(host, port)`` tuple.
        :param password: the RCON password.
        """
        self._disconnect()
        rcon = rconlink.reconnect.ReconnectingRCON(
            address, password, self._settings)
        try:
            rcon.connect()
        except rconlink.RCONError as exc:
            print("Could not connect:", exc)
        else:
            self._rcon = rcon
            self.prompt = "{0}:{1} ] ".format(*address)

    def _disconnect(self):
        """Drop the current session, if any, and reset the prompt."""
        if self._rcon:
            self._rcon.close()
            self._rcon = None
        self.prompt = self._INITIAL_PROMPT

    def default(self, command):
        """Send a line to the server and print the reply.

        Errors are printed rather than raised so the session carries on.
        """
        if not self._rcon:
            print("Not connected. Use !connect to connect to a server.")
            return
        try:
            response = self._rcon.execute(command)
        except rconlink.RCONBusyReconnectingError as exc:
            print("Lost connection to server ({}); "
                  "reconnecting.".format(exc.reason))
        except rconlink.RCONError as exc:
            print("Command failed:", exc)
        else:
            if response.endswith("\n"):
                response = response[:-1]
            print(response)

    def emptyline(self):
        """Do nothing."""

    def do_EOF(self, _):
        """Ctrl-D ends the session."""
        self._disconnect()
        return True

    def do_help(self, _):
        print(self._HELP_TEXT)

    def do_shell(self, command_string):
        """Dispatch a ``!name args...`` line to ``do_shell_name(args)``."""
        split = shlex.split(command_string)
        if not split:
            print(self._HELP_TEXT)
            return None
        command, argv = split[0], split[1:]
        command_handler = getattr(self, "do_shell_" + command, None)
        if command_handler:
            return command_handler(argv)
        print("Unknown command !{}".format(command))
        return None

    def do_shell_exit(self, argv):
        """End the session."""
        self._disconnect()
        return True

    def do_shell_connect(self, argv):
        """``!connect HOST[:PORT] [PASSWORD]``

        The password is read from the terminal when left out. Bad
        arguments are reported by :mod:`argparse` and ignored.
        """
        parser = argparse.ArgumentParser(prog="!connect", add_help=False)
        parser.add_argument("address", metavar="HOST[:PORT]",
                            type=rconlink.connection.parse_address)
        parser.add_argument("password", metavar="PASSWORD", nargs="?")
        try:
            arguments = parser.parse_args(argv)
        except SystemExit:
            return
        if arguments.password is None:
            arguments.password = getpass.getpass("Password: ")
        self._connect(arguments.address, arguments.password)

    def do_shell_disconnect(self, argv):
        """End the current session but keep the shell open."""
        self._disconnect()


def shell(address=None, password=None, settings=None):
    """Run an interactive session until the user quits.

    With an ``address`` the session starts out connected, asking for the
    password if none was given. Otherwise ``!connect`` must be used.
    Ctrl-C quits.

    :param address: a ``(host, port)`` tuple.
    :param str password: used only together with ``address``.
    :param settings: optional :class:`rconlink.connection.Settings`.
    """
    rcon_shell = _RCONShell(settings)
    try:
        if address:
            host, port = address
            if ":" in host:
                host = "[{}]".format(host)
            rcon_shell.onecmd("!connect {}:{} {}".format(
                host, port, shlex.quote(password) if password else ""))
        rcon_shell.cmdloop()
    except KeyboardInterrupt:
        pass


def _main(argv=None):
    """Entry point of the ``rconlink`` command.

    ``--execute`` runs one command through :func:`execute`; a failure
    exits with the error as the message. Otherwise :func:`shell` is
    started.

    :param argv: arguments, excluding the program name. Defaults to
        ``sys.argv[1:]``.

    :raises rconlink.RCONAddressError: if ADDRESS can't be parsed.
    """
    arguments = docopt.docopt(_USAGE.format(program="rconlink"), argv)
    if arguments["--verbose"]:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(threadName)s %(name)s: %(message)s",
        )
    else:
        logging.disable(logging.CRITICAL)
    if arguments["ADDRESS"] is None:
        address = None
    else:
        address = rconlink.connection.parse_address(arguments["ADDRESS"])
    password = arguments["--password"]
    command = arguments["--execute"]

    if command is None:
        shell(address, password)
    else:
        try:
            print(execute(address, password, command))
        except rconlink.RCONError as exc:
            log.debug("Command failed", exc_info=True)
            sys.exit("{}: {}".format(exc.__class__.__name__, exc))


if __name__ == "__main__":
    _main()
