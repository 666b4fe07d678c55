"""HTTP probe recording per-phase request timings."""

import http.client
import logging
import socket
import ssl
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from urllib.parse import urlparse

from .models import Sample

logger = logging.getLogger(__name__)

# Maximum response body size read per probe (1MB). The body is only read to
# time the transfer, it is discarded afterwards.
MAX_BODY_SIZE = 1024 * 1024

DEFAULT_USER_AGENT = "sitepulse/0.1"

# Body read size per deadline check.
READ_CHUNK_SIZE = 64 * 1024

# getaddrinfo() takes no timeout, so lookups run here and are waited on with one.
_resolver = ThreadPoolExecutor(max_workers=8, thread_name_prefix="dns")


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


def _remaining(deadline: float) -> float:
    """Return the seconds left before deadline, raising TimeoutError once it passed."""
    left = deadline - time.monotonic()
    if left <= 0:
        raise TimeoutError
    return left


class HttpProbe:
    """Performs one GET request per call and times each phase.

    The connection is built by hand (resolve, connect, TLS wrap) so every
    phase can be timed separately; http.client then sends the request over
    the prepared socket. Redirects are not followed: a 3xx response counts
    as a valid sample.

    Calling the probe never raises. Any failure is returned as a Sample with
    status_code 0 and the error text, keeping the timings measured so far.

    timeout bounds the whole probe, from name resolution to the last body
    byte, not each socket operation.

    Example:
        probe = HttpProbe(timeout=10)
        sample = probe("https://example.com")
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._ssl_context = ssl_context or ssl.create_default_context()

    def __call__(self, url: str) -> Sample:
        return self.check(url)

    def check(self, url: str) -> Sample:
        """Probe url once.

        Args:
            url: http:// or https:// URL to request.

        Returns:
            Sample stamped with the time the probe completed.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return Sample.failure(f"Unsupported scheme '{parsed.scheme}'")
        if not parsed.hostname:
            return Sample.failure("Invalid URL: no hostname")

        is_https = parsed.scheme == "https"
        host = parsed.hostname
        try:
            port = parsed.port or (443 if is_https else 80)
        except ValueError as e:
            return Sample.failure(f"Invalid port: {e}")

        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"

        timings: dict[str, float] = {}
        sock: socket.socket | None = None
        start = time.monotonic()
        deadline = start + self.timeout

        try:
            lookup = _resolver.submit(socket.getaddrinfo, host, port, type=socket.SOCK_STREAM)
            infos = lookup.result(timeout=_remaining(deadline))
            timings["dns_ms"] = _elapsed_ms(start)
            address = infos[0][4]

            phase = time.monotonic()
            sock = socket.create_connection((address[0], address[1]), timeout=_remaining(deadline))
            timings["connect_ms"] = _elapsed_ms(phase)

            if is_https:
                phase = time.monotonic()
                sock.settimeout(_remaining(deadline))
                sock = self._ssl_context.wrap_socket(sock, server_hostname=host)
                timings["tls_ms"] = _elapsed_ms(phase)

            conn = http.client.HTTPConnection(host, port)
            conn.sock = sock
            sock.settimeout(_remaining(deadline))
            conn.request("GET", path, headers={"User-Agent": self.user_agent, "Connection": "close"})
            response = conn.getresponse()
            timings["ttfb_ms"] = _elapsed_ms(start)

            received = 0
            while received < MAX_BODY_SIZE:
                sock.settimeout(_remaining(deadline))
                chunk = response.read1(min(READ_CHUNK_SIZE, MAX_BODY_SIZE - received))
                if not chunk:
                    break
                received += len(chunk)
            timings["response_ms"] = _elapsed_ms(start)
            conn.close()

            return Sample(
                timestamp=datetime.now(UTC),
                status_code=response.status,
                **timings,
            )

        except socket.gaierror as e:
            return Sample.failure(f"DNS resolution failed: {e}", **timings)
        except TimeoutError:
            return Sample.failure(f"Timeout after {self.timeout}s", **timings)
        except ssl.SSLCertVerificationError as e:
            return Sample.failure(f"SSL certificate verification failed: {e.verify_message}", **timings)
        except ssl.SSLError as e:
            return Sample.failure(f"SSL error: {e}", **timings)
        except ConnectionRefusedError:
            return Sample.failure("Connection refused", **timings)
        except (OSError, http.client.HTTPException) as e:
            return Sample.failure(f"Connection failed: {e}", **timings)
        except Exception as e:
            logger.debug("Unexpected probe failure for %s", url, exc_info=True)
            return Sample.failure(str(e) or type(e).__name__, **timings)
        finally:
            if sock is not None:
                sock.close()
