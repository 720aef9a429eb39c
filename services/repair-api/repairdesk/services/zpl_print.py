from __future__ import annotations

import logging
import socket
import time

logger = logging.getLogger(__name__)


def send_raw_zpl(
    zpl: bytes,
    host: str,
    port: int = 9100,
    attempts: int = 3,
    timeout: float = 3.0,
) -> bool:
    last_error: str | None = None
    for attempt in range(attempts):
        try:
            with socket.create_connection((host, port), timeout=timeout) as conn:
                conn.sendall(zpl)
            logger.info("Sent %s bytes of ZPL to %s:%s", len(zpl), host, port)
            return True
        except OSError as exc:
            last_error = str(exc)
            logger.warning("Printer %s:%s attempt %s failed: %s", host, port, attempt + 1, exc)
            if attempt + 1 < attempts:
                time.sleep(2**attempt)
    raise RuntimeError(last_error or "Unknown printer error")
