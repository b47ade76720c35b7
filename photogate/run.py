"""Console entry point: serve photogate.main:app under uvicorn.

Host and port come from the ``server`` section of the loaded config
(127.0.0.1:8080 unless overridden; PHOTOGATE_PORT wins over the file). The
connection limits below bound how many uploads can be in flight at once,
which in turn bounds how many images queue for the inference pool.

Invoke as ``photogate`` (installed script) or ``python -m photogate.run``.
"""

from __future__ import annotations

import uvicorn

from photogate.config import load_config

# ─── Connection limits ──────────────────────────────────────────────────

# Beyond this many open connections uvicorn answers 503.
UVICORN_LIMIT_CONCURRENCY: int = 100

# Pending accept() queue handed to the socket.
UVICORN_BACKLOG: int = 50

# Idle keep-alive seconds before the socket is closed.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Load config and block in uvicorn until the process is stopped.

    Raises:
        SystemExit: Propagated from load_config() on config parse errors.
    """
    config = load_config()

    uvicorn.run(
        "photogate.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
