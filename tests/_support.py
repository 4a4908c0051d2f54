"""Loopback doubles and helpers shared by the async tests."""

from __future__ import annotations

import asyncio
import dataclasses
import socket
from typing import Dict, List, Optional, Tuple

from telnet_gateway.addressbook import AddressBook, AddressBookEntry
from telnet_gateway.bridge import Bridge, BridgeResult
from telnet_gateway.connector import Endpoint, TargetConnector

LOCALHOST = "127.0.0.1"


def run(coro, timeout: float = 15.0):
    return asyncio.run(asyncio.wait_for(coro, timeout=timeout))


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((LOCALHOST, 0))
        return s.getsockname()[1]


def default_book() -> AddressBook:
    return AddressBook.from_pairs([
        ("Particles", "particlesbbs.dyndns.org:6400"),
        ("Level29", "bbs.fozztexx.com:23"),
    ])


async def read_until(reader: asyncio.StreamReader, token: bytes, timeout: float = 3.0) -> bytes:
    return await asyncio.wait_for(reader.readuntil(token), timeout=timeout)


async def read_eof(reader: asyncio.StreamReader, timeout: float = 3.0) -> bytes:
    return await asyncio.wait_for(reader.read(), timeout=timeout)


async def stream_pair(name: str = "ep") -> Tuple[Endpoint, asyncio.StreamReader, asyncio.StreamWriter]:
    """Connected loopback pair: (server-side Endpoint, client reader, client writer)."""
    accepted: "asyncio.Future[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]" = asyncio.get_running_loop().create_future()

    async def _on(r: asyncio.StreamReader, w: asyncio.StreamWriter) -> None:
        if not accepted.done():
            accepted.set_result((r, w))

    srv = await asyncio.start_server(_on, host=LOCALHOST, port=0)
    port = srv.sockets[0].getsockname()[1]
    cr, cw = await asyncio.open_connection(LOCALHOST, port)
    sr, sw = await accepted
    srv.close()
    return Endpoint(name=name, reader=sr, writer=sw), cr, cw


class EchoTarget:
    """Outbound target double: echoes every byte back, records end-of-stream."""

    def __init__(self) -> None:
        self.writers: List[asyncio.StreamWriter] = []
        self.connected = asyncio.Event()
        self.peer_eof = asyncio.Event()
        self.port = 0
        self._server: Optional[asyncio.base_events.Server] = None
        self._closing = False

    async def start(self) -> "EchoTarget":
        self._server = await asyncio.start_server(self._handle, host=LOCALHOST, port=0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writers.append(writer)
        self.connected.set()
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except (ConnectionError, OSError):
            pass
        finally:
            if not self._closing:
                self.peer_eof.set()
            writer.close()

    async def hang_up(self) -> None:
        self._closing = True
        for w in self.writers:
            w.close()

    async def stop(self) -> None:
        await self.hang_up()
        if self._server is not None:
            self._server.close()


class RedirectConnector(TargetConnector):
    """Connects every entry to a local port while keeping its label and address."""

    def __init__(self, ports: Dict[int, int], **kw) -> None:
        super().__init__(**kw)
        self.ports = ports
        self.calls: List[AddressBookEntry] = []

    async def connect(self, entry: AddressBookEntry):
        self.calls.append(entry)
        local = dataclasses.replace(entry, host=LOCALHOST, port=self.ports.get(entry.index, free_port()))
        return await super().connect(local)


class GatedConnector(RedirectConnector):
    """Blocks in connect() until released; records cancellation."""

    def __init__(self, ports: Dict[int, int], **kw) -> None:
        super().__init__(ports, **kw)
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def connect(self, entry: AddressBookEntry):
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        return await super().connect(entry)


class CountingBridge(Bridge):
    def __init__(self, **kw) -> None:
        super().__init__(**kw)
        self.results: List[BridgeResult] = []
        self.runs = 0

    async def run(self, a: Endpoint, b: Endpoint) -> BridgeResult:
        self.runs += 1
        res = await super().run(a, b)
        self.results.append(res)
        return res


async def open_client(port: int) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection(LOCALHOST, port)


def session_id_from_menu(menu: bytes) -> str:
    first = menu.split(b"\r\n", 1)[0].decode("utf-8")
    assert first.startswith("Hello ")
    return first[len("Hello "):]
