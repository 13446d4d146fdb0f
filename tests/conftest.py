"""
Shared fixtures: a served MP3 directory, a self-signed certificate, and a
TLS server running on an ephemeral localhost port.
"""

import os
import threading

import pytest

from analysis.performance_eval import PerfRecorder
from client.commands import MediaClient
from common import channel
from server import certs
from server import server_main

A_MP3 = os.urandom(5000)
B_MP3 = os.urandom(768)


@pytest.fixture
def served_dir(tmp_path):
    """
    Layout:
        tmp/secret.txt          outside the served directory
        tmp/mp3s/a.mp3
        tmp/mp3s/b.mp3
        tmp/mp3s/notes.txt      no MP3 marker
        tmp/mp3s/c.mp3.d/       directory, never listed
    """
    (tmp_path / "secret.txt").write_text("not for clients")
    root = tmp_path / "mp3s"
    root.mkdir()
    (root / "a.mp3").write_bytes(A_MP3)
    (root / "b.mp3").write_bytes(B_MP3)
    (root / "notes.txt").write_text("liner notes")
    (root / "c.mp3.d").mkdir()
    return str(root)


@pytest.fixture(scope="session")
def cert_pair(tmp_path_factory):
    base = tmp_path_factory.mktemp("tls")
    return certs.generate_self_signed_cert(str(base / "cert.pem"), str(base / "key.pem"))


@pytest.fixture(scope="session")
def server_context(cert_pair):
    cert_file, key_file = cert_pair
    return channel.create_server_context(cert_file, key_file)


class RunningServer:
    """A serve() loop on its own thread, bound to 127.0.0.1:<ephemeral>."""

    def __init__(self, context, served_dir, timeout=channel.SESSION_TIMEOUT):
        self.perf = PerfRecorder(source="server")
        self.listener = server_main.create_listener(0, host="127.0.0.1")
        self.port = self.listener.getsockname()[1]
        self.stop_event = threading.Event()
        self.thread = threading.Thread(
            target=server_main.serve,
            args=(self.listener, context, served_dir, self.perf, self.stop_event, timeout),
            daemon=True,
        )
        self.thread.start()

    def stop(self):
        self.stop_event.set()
        self.thread.join(timeout=5)
        self.listener.close()


@pytest.fixture
def start_server(server_context):
    started = []

    def _start(served_dir, timeout=channel.SESSION_TIMEOUT):
        server = RunningServer(server_context, served_dir, timeout)
        started.append(server)
        return server

    yield _start
    for server in started:
        server.stop()


@pytest.fixture
def server(start_server, served_dir):
    return start_server(served_dir)


@pytest.fixture
def download_dir(tmp_path):
    return str(tmp_path / "downloads")


@pytest.fixture
def client(server, download_dir):
    return MediaClient("127.0.0.1", server.port, download_dir=download_dir, timeout=5)
