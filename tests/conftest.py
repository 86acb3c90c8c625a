import socket
import threading

import pytest


class Listener:
    """Loopback TCP listener that optionally greets every client with a payload."""

    def __init__(self, payload: bytes = b"", port: int = 0):
        self.payload = payload
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", port))
        self.sock.listen(64)
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self.accepted = 0
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            self.accepted += 1
            with conn:
                try:
                    if self.payload:
                        conn.sendall(self.payload)
                    # hold the connection until the prober hangs up
                    conn.settimeout(1.0)
                    conn.recv(1)
                except OSError:
                    pass

    def close(self):
        self._stop.set()
        self._thread.join(timeout=2)
        self.sock.close()


@pytest.fixture
def listener():
    started = []

    def _start(payload: bytes = b"", port: int = 0) -> Listener:
        lst = Listener(payload, port)
        started.append(lst)
        return lst

    yield _start
    for lst in started:
        lst.close()


@pytest.fixture
def closed_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
