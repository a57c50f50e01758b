# -*- coding: utf-8 -*-

import threading
import time
import unittest.mock as mock

import pytest

import rconlink.testing


def wait_for(predicate, timeout=3.0, interval=0.01):
    """Poll until a predicate is true.

    :returns: ``True`` if the predicate became true within the timeout.
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def pytest_configure():
    pytest.Mock = mock.Mock
    pytest.MagicMock = mock.MagicMock
    pytest.wait_for = wait_for


@pytest.fixture
def rcon_server():
    server = rconlink.testing.TestRCONServer()
    thread = threading.Thread(target=server.serve_forever)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join()
