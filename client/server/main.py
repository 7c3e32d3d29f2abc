"""
Local development entry point.

Runs the control API on localhost with uvicorn. The UI talks to this
process; this process talks to the interview backend.
"""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "server.asgi:app",
        host=os.environ.get("CONTROL_HOST", "127.0.0.1"),
        port=int(os.environ.get("CONTROL_PORT", "8765")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
