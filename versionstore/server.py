"""The storage server: network front end plus log replication.

Clients talk to the server over TCP with newline-delimited JSON: each line
is a request mapping served by ``StorageService.handle`` and answered with
one response line. The same framing is used to pull log entries from the
log server.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
from contextlib import suppress
from dataclasses import dataclass
from functools import partial
from typing import Any

from .log2storage import Log2Storage
from .records import FetchEntriesResponse
from .service import INTERNAL, INVALID_ARGUMENT, ServiceError, StorageService
from .storage import VersionedStorage

logger = logging.getLogger(__name__)

DEFAULT_IP = "127.0.0.1"
DEFAULT_STORAGE_PORT = 25001
DEFAULT_LOG_PORT = 25002
DEFAULT_DATA_PATH = "/tmp/ss_unit_test"


def _check_endpoint(ip: str, port: int) -> None:
    ipaddress.ip_address(ip)
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an int, not {type(port).__name__}")
    if not 0 <= port <= 65535:
        raise ValueError(f"port {port} is out of range")


@dataclass(frozen=True)
class StorageServerConfig:
    """Address the storage server listens on."""

    ip: str = DEFAULT_IP
    port: int = DEFAULT_STORAGE_PORT

    def __post_init__(self) -> None:
        _check_endpoint(self.ip, self.port)


@dataclass(frozen=True)
class LogServerConfig:
    """Address of the log server that entries are pulled from."""

    ip: str = DEFAULT_IP
    port: int = DEFAULT_LOG_PORT

    def __post_init__(self) -> None:
        _check_endpoint(self.ip, self.port)


def _encode_line(message: Any) -> bytes:
    return json.dumps(message).encode("utf-8") + b"\n"


class LogClient:
    """Fetches log entries from the log server."""

    def __init__(self, host: str | None = None, port: int | None = None) -> None:
        defaults = LogServerConfig()
        self.host = defaults.ip if host is None else host
        self.port = defaults.port if port is None else port

    async def fetch_entries(
        self, prev_commit_version: int, max_entries: int
    ) -> FetchEntriesResponse:
        """Request up to ``max_entries`` entries starting at ``prev_commit_version``."""
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            writer.write(
                _encode_line(
                    {
                        "method": "fetch_entries",
                        "prev_commit_version": prev_commit_version,
                        "max_entries": max_entries,
                    }
                )
            )
            await writer.drain()
            line = await reader.readline()
        finally:
            writer.close()
            with suppress(OSError):
                await writer.wait_closed()
        if not line:
            raise ConnectionError("log server closed the connection")
        reply = json.loads(line)
        if not isinstance(reply, dict):
            raise ValueError("log server reply must be a mapping")
        if not reply.get("ok"):
            error = reply.get("error") or {}
            raise ServiceError(
                str(error.get("code", INTERNAL)), str(error.get("message", ""))
            )
        return FetchEntriesResponse.from_dict(reply.get("result") or {})


class StoreServerManager:
    """Runs the storage service and log replication until stopped."""

    def __init__(
        self,
        data_path: str | None = None,
        config: StorageServerConfig | None = None,
        log_client: Any = None,
    ) -> None:
        self.data_path = DEFAULT_DATA_PATH if data_path is None else data_path
        self.config = config if config is not None else StorageServerConfig()
        self.log_client = log_client if log_client is not None else LogClient()
        self.address: tuple[str, int] | None = None
        self._stop_event = asyncio.Event()
        self._started = asyncio.Event()
        self._failure: BaseException | None = None
        self._running = False
        self._writers: set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        """Serve requests and replicate logs; returns once ``stop`` is called."""
        if self._running:
            raise RuntimeError("storage server is already running")
        self._running = True
        self._stop_event.clear()
        self._started.clear()
        self._failure = None
        storage = None
        log2storage = None
        server = None
        try:
            try:
                storage = VersionedStorage(self.data_path)
                service = StorageService(storage)
                log2storage = Log2Storage(storage, self.log_client)
                server = await asyncio.start_server(
                    partial(self._serve_client, service),
                    self.config.ip,
                    self.config.port,
                )
            except BaseException as exc:
                self._failure = exc
                self._started.set()
                raise
            host, port = server.sockets[0].getsockname()[:2]
            self.address = (host, port)
            logger.info("ss: Starting RPC service on %s:%s", host, port)
            await log2storage.start()
            self._started.set()
            await self._stop_event.wait()
            logger.info("ss: RPC service received shutdown signal")
        finally:
            if server is not None:
                server.close()
                for writer in list(self._writers):
                    writer.close()
                await server.wait_closed()
                logger.info("ss: RPC service shutdown complete")
            if log2storage is not None:
                await log2storage.stop()
                logger.info("ss: log2storage service shutdown complete")
            if storage is not None:
                storage.close()
            self._running = False

    async def wait_started(self) -> tuple[str, int]:
        """Wait until the server listens and return its address."""
        await self._started.wait()
        if self._failure is not None:
            raise RuntimeError("storage server failed to start") from self._failure
        assert self.address is not None
        return self.address

    async def stop(self) -> None:
        """Ask a running server to shut down."""
        logger.warning("ss: Storage initiating shutdown sequence...")
        self._stop_event.set()
        logger.warning("ss: All storage services stopped")

    async def _serve_client(
        self,
        service: StorageService,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._writers.add(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    request = json.loads(line)
                except ValueError as exc:
                    response: dict[str, Any] = {
                        "ok": False,
                        "error": {
                            "code": INVALID_ARGUMENT,
                            "message": f"malformed request: {exc}",
                        },
                    }
                else:
                    response = await asyncio.to_thread(service.handle, request)
                writer.write(_encode_line(response))
                await writer.drain()
        except (ConnectionError, ValueError, asyncio.IncompleteReadError) as exc:
            logger.info("ss: client connection ended: %s", exc)
        finally:
            self._writers.discard(writer)
            writer.close()