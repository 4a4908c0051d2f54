"""
Outbound TCP connections to address book entries.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional, Union

from .addressbook import AddressBookEntry
from .util import close_writer, is_closing


@dataclass
class Endpoint:
    name: str
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter

    def is_closing(self) -> bool:
        return is_closing(self.writer)

    def peer(self) -> str:
        return str(self.writer.get_extra_info("peername"))

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def close(self, timeout: float = 0.25) -> None:
        await close_writer(self.writer, timeout=timeout)


@dataclass(frozen=True)
class ConnectFailure:
    entry: AddressBookEntry
    cause: BaseException

    @property
    def reason(self) -> str:
        if isinstance(self.cause, asyncio.TimeoutError):
            return "timed out"
        if isinstance(self.cause, socket.gaierror):
            return f"lookup failed ({self.cause.strerror or self.cause})"
        if isinstance(self.cause, OSError) and self.cause.strerror:
            return self.cause.strerror.lower()
        return str(self.cause) or type(self.cause).__name__


class TargetConnector:
    def __init__(self, *, connect_timeout: float = 5.0, log: Optional[logging.Logger] = None) -> None:
        self.connect_timeout = connect_timeout
        self.log = log or logging.getLogger("telnet_gateway.connector")

    async def connect(self, entry: AddressBookEntry) -> Union[Endpoint, ConnectFailure]:
        self.log.debug("connecting to %s (%s:%d) timeout=%.1fs", entry.label, entry.host, entry.port, self.connect_timeout)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host=entry.host, port=entry.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            fail = ConnectFailure(entry=entry, cause=e)
            self.log.warning("connect to %s - %s failed: %s", entry.label, entry.address, fail.reason)
            return fail

        sock = writer.get_extra_info("socket")
        if sock is not None:
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                pass

        ep = Endpoint(name=f"outbound:{entry.label}", reader=reader, writer=writer)
        self.log.info("connected to %s - %s peer=%s", entry.label, entry.address, ep.peer())
        return ep
