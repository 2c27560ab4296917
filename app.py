from __future__ import annotations

import argparse
import os
import threading
from typing import Optional

import uvicorn

from xsolock.console import HELP, run_command
from xsolock.core.errors import ConfigError
from xsolock.core.logger import setup_logging
from xsolock.station import build_station


class WebServerHandle:
    def __init__(self, *, app, host: str, port: int, logger):  # noqa: ANN001
        self.app = app
        self.host = host
        self.port = port
        self.logger = logger
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        cfg = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning")
        self._server = uvicorn.Server(cfg)

        def run() -> None:
            assert self._server is not None
            self._server.run()

        self._thread = threading.Thread(target=run, name="xsolock-web", daemon=True)
        self._thread.start()
        self.logger.info(f"Listening on http://{self.host}:{self.port}")

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=3.0)

    def wait(self) -> None:
        if self._thread is not None:
            self._thread.join()


def main() -> None:
    ap = argparse.ArgumentParser(description="XSO Lock station service")
    ap.add_argument("--root", default=".", help="Station directory (config/, logs/, tokens file).")
    ap.add_argument("--no-console", action="store_true", help="Run the web service only, without the operator console.")
    args = ap.parse_args()

    logger = setup_logging(os.path.join(args.root, "logs"))
    try:
        station = build_station(args.root, logger=logger)
    except ConfigError as e:
        logger.error(f"Config invalid: {e.user_message}")
        raise SystemExit(2)

    cfg = station.cfg
    if station.orphans_cancelled:
        logger.info(f"Cancelled {station.orphans_cancelled} orphaned session(s) from a previous run")
    if cfg.web.bind_host not in {"127.0.0.1", "::1", "localhost"}:
        logger.warning(f"Binding to {cfg.web.bind_host}: hook and scan endpoints are reachable from the network")
    if not cfg.admin.pin:
        logger.info("Admin pin not configured: bulk reset disabled.")
    logger.info(f"Active batch {cfg.station.batch_id}; hook completion phase '{cfg.hook.completion_phase}'")

    server = WebServerHandle(app=station.create_app(), host=cfg.web.bind_host, port=cfg.web.port, logger=logger)
    server.start()

    if args.no_console:
        try:
            server.wait()
        except KeyboardInterrupt:
            pass
        server.stop()
        return

    logger.info(f"Station ready. {HELP}")
    while True:
        try:
            text = input("> ").strip()
        except EOFError:
            print()
            break
        except KeyboardInterrupt:
            print()
            break
        out = run_command(station, text)
        if out is None:
            break
        if out:
            print(out)

    server.stop()


if __name__ == "__main__":
    main()
