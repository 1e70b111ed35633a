"""
Clients for padding oracles running as network services (see padoracle.server).

Network failures are retried with exponential backoff and never reported as bad padding. When the
retries run out the query fails with OracleTransportError.
"""

import logging
import threading
import time

import requests
from pwnlib.exception import PwnlibException
from pwnlib.tubes.remote import remote
from pwnlib.tubes.tube import tube

from . import config
from .errors import AttackCancelledError, InvalidInputError, OracleTransportError

log = logging.getLogger(__name__)


class ProtocolError(Exception):
    """The service answered with something we don't understand."""


TRANSIENT_ERRORS = (EOFError, OSError, PwnlibException, requests.RequestException, ProtocolError)


class RemoteOracle:
    """
    Base class for network oracles.

    try_decrypt takes an optional cancelled event, which the attack sets when its recovery is
    cancelled or times out. It stops any further attempts and cuts a backoff wait short. A request
    already sent is only bounded by timeout.
    """

    cancellable = True

    def __init__(
        self,
        block_size: int = config.BLOCK_SIZE,
        retries: int = config.RETRIES,
        backoff: float = config.BACKOFF,
        timeout: float = config.TIMEOUT,
        min_interval: float = config.MIN_INTERVAL,
    ):
        self.block_size = block_size
        self.retries = retries
        self.backoff = backoff
        self.timeout = timeout
        self.min_interval = min_interval
        self._throttle_lock = threading.Lock()
        self._last_request = 0.0

    def _throttle(self):
        with self._throttle_lock:
            wait = self._last_request + self.min_interval - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _with_retries(self, request, *args, cancelled: threading.Event | None = None):
        for attempt in range(self.retries + 1):
            if cancelled is not None and cancelled.is_set():
                raise AttackCancelledError("Oracle request cancelled")
            try:
                self._throttle()
                return request(*args)
            except TRANSIENT_ERRORS as e:
                self._reset()
                if attempt == self.retries:
                    raise OracleTransportError(f"Oracle unreachable after {attempt + 1} attempts: {e}") from e
                delay = self.backoff * 2**attempt
                log.warning("Oracle request failed (%s), retrying in %.2fs", e, delay)
                if cancelled is None:
                    time.sleep(delay)
                elif cancelled.wait(delay):
                    raise AttackCancelledError("Oracle request cancelled") from e

    def _reset(self):
        pass

    def _request(self, probe: bytes) -> bool:
        raise NotImplementedError

    def _fetch_ciphertext(self) -> bytes:
        raise NotImplementedError

    def try_decrypt(self, probe: bytes, cancelled: threading.Event | None = None) -> bool:
        return self._with_retries(self._request, probe, cancelled=cancelled)

    def ciphertext(self) -> bytes:
        """The ciphertext the service is guarding."""
        return self._with_retries(self._fetch_ciphertext)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class TcpOracle(RemoteOracle):
    """
    Talks to the line based service: hex probe in, one reply line out. A single connection is
    shared by every thread, so requests on it are serialized.
    """

    def __init__(self, host: str, port: int, **kwargs):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self._conn: tube | None = None
        self._ciphertext: bytes | None = None
        self._conn_lock = threading.Lock()

    def _connect(self) -> tube:
        if self._conn is None:
            conn = remote(self.host, self.port, timeout=self.timeout, level="error")
            # SECRET ANNOUNCEMENT:
            conn.recvline()
            line = conn.recvline(keepends=False)
            if not line:
                conn.close()
                raise EOFError("Timed out waiting for banner")
            try:
                self._ciphertext = bytes.fromhex(line.decode())
            except ValueError:
                conn.close()
                raise ProtocolError(f"Bad ciphertext line {line!r}")
            self._conn = conn
        return self._conn

    def _reset(self):
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _request(self, probe: bytes) -> bool:
        with self._conn_lock:
            conn = self._connect()
            if not conn.recvuntil(b"> "):
                raise EOFError("Timed out waiting for prompt")
            conn.sendline(probe.hex().encode())
            line = conn.recvline(keepends=False)

        if b"Thank" in line:
            return True
        if b"Decryption error" in line:
            return False
        if b"not properly formatted" in line:
            raise InvalidInputError(f"Oracle rejected probe {probe.hex()}")
        if not line:
            raise EOFError("Timed out waiting for reply")
        raise ProtocolError(f"Unexpected reply {line!r}")

    def _fetch_ciphertext(self) -> bytes:
        with self._conn_lock:
            self._connect()
            return self._ciphertext

    def close(self):
        self._reset()


class HttpOracle(RemoteOracle):
    """
    Talks to the flask service. 200 means valid padding, 403 bad padding, 400 a malformed probe.
    Anything else is treated as a transient failure.
    """

    def __init__(self, base_url: str, session: requests.Session | None = None, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()

    def _request(self, probe: bytes) -> bool:
        res = self.session.get(f"{self.base_url}/oracle/{probe.hex()}", timeout=self.timeout)
        if res.status_code == 200:
            return True
        if res.status_code == 403:
            return False
        if res.status_code == 400:
            raise InvalidInputError(f"Oracle rejected probe {probe.hex()}")
        raise ProtocolError(f"Unexpected status code {res.status_code}")

    def _fetch_ciphertext(self) -> bytes:
        res = self.session.get(f"{self.base_url}/ciphertext", timeout=self.timeout)
        if res.status_code != 200:
            raise ProtocolError(f"Unexpected status code {res.status_code}")
        try:
            return bytes.fromhex(res.text.strip())
        except ValueError:
            raise ProtocolError(f"Bad ciphertext {res.text!r}")

    def close(self):
        self.session.close()
