#!/usr/bin/env python3
"""
Development server with auto-port detection (8000-8006)
"""
import socket

import structlog
import uvicorn

logger = structlog.get_logger()


def is_port_available(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("127.0.0.1", port))
            return True
        except OSError:
            return False


def find_available_port(start: int = 8000, end: int = 8006) -> int:
    for port in range(start, end + 1):
        if is_port_available(port):
            return port
    raise RuntimeError(f"No available ports in range {start}-{end}")


def main() -> None:
    port = find_available_port()
    logger.info("dev_server_starting", port=port, docs=f"http://127.0.0.1:{port}/docs")
    uvicorn.run("main:app", host="127.0.0.1", port=port, reload=True, log_level="info")


if __name__ == "__main__":
    main()
