"""
Per-connection menu state machine.

    MENU -> CONNECTING -> BRIDGING -> MENU
      any state -> CLOSED on inbound disconnect or fatal error

Each state performs one suspending operation. The session owns the inbound
endpoint for its whole lifetime and an outbound endpoint only while connecting
or bridging; at most one outbound endpoint exists at a time.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .addressbook import AddressBook, AddressBookEntry, InvalidSelection
from .bridge import SIDE_A, Bridge, BridgeResult
from .connector import ConnectFailure, Endpoint, TargetConnector
from .util import utc_iso

CRLF = "\r\n"
PROMPT = "> "

CR, LF, NUL = 0x0D, 0x0A, 0x00


class SessionState(str, Enum):
    MENU = "menu"
    CONNECTING = "connecting"
    BRIDGING = "bridging"
    CLOSED = "closed"


class InboundDisconnect(Exception):
    """The remote user closed or reset the inbound connection."""


def render_menu(session_id: str, book: AddressBook) -> bytes:
    lines = [f"Hello {session_id}", "", "Address book:"]
    for entry in book.list():
        lines.append(f"{entry.index:>3}: {entry.label} - {entry.address}")
    return (CRLF.join(lines) + CRLF + PROMPT).encode("utf-8")


def invalid_choice_notice(raw: str) -> bytes:
    return f"Invalid choice {raw}{CRLF}".encode("utf-8")


def connecting_notice(entry: AddressBookEntry) -> bytes:
    return f"Connecting to {entry.label} - {entry.address}...{CRLF}{CRLF}".encode("utf-8")


def connect_failed_notice(fail: ConnectFailure) -> bytes:
    e = fail.entry
    return f"Could not connect to {e.label} - {e.address}: {fail.reason}{CRLF}{CRLF}".encode("utf-8")


def disconnected_notice(entry: AddressBookEntry) -> bytes:
    return f"{CRLF}{CRLF}Disconnected from {entry.label} - {entry.address}{CRLF}{CRLF}".encode("utf-8")


class MenuSession:
    def __init__(
        self,
        *,
        session_id: str,
        inbound: Endpoint,
        book: AddressBook,
        connector: TargetConnector,
        bridge: Bridge,
        log: Optional[logging.Logger] = None,
        max_line_bytes: int = 1024,
        chunk_size: int = 65536,
    ) -> None:
        self.id = session_id
        self.inbound = inbound
        self.book = book
        self.connector = connector
        self.bridge = bridge
        self.log = log or logging.getLogger("telnet_gateway.session")
        self.max_line_bytes = max_line_bytes
        self.chunk_size = chunk_size

        # inbound bytes read past the last menu line
        self._pending = bytearray()
        # a line ended at CR; a following LF or NUL belongs to it
        self._after_cr = False

        self.state = SessionState.MENU
        self.target: Optional[AddressBookEntry] = None
        self.outbound: Optional[Endpoint] = None
        self.opened_ts = utc_iso()

        self.bridges = 0
        self.bytes_in = 0   # inbound -> outbound, summed over bridges
        self.bytes_out = 0  # outbound -> inbound
        self.last_result: Optional[BridgeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "peer": self.inbound.peer(),
            "state": self.state.value,
            "target": self.target.to_dict() if self.target else None,
            "opened_ts": self.opened_ts,
            "bridges": self.bridges,
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
        }

    # -------------------------------------------------------------------------
    # inbound I/O
    # -------------------------------------------------------------------------

    async def _send(self, data: bytes) -> None:
        if self.inbound.is_closing():
            raise InboundDisconnect()
        try:
            await self.inbound.write(data)
        except OSError as e:
            raise InboundDisconnect() from e

    async def _recv(self) -> bytes:
        try:
            data = await self.inbound.reader.read(self.chunk_size)
        except OSError as e:
            raise InboundDisconnect() from e
        if not data:
            raise InboundDisconnect()
        return data

    def _drop_cr_continuation(self, buf: bytearray) -> None:
        if self._after_cr and buf:
            if buf[0] in (LF, NUL):
                del buf[0]
            self._after_cr = False

    async def _read_line(self) -> Tuple[str, bool]:
        """
        Read one menu line ended by CR, LF, CR LF or CR NUL.

        Returns the trimmed text and whether the line was longer than
        max_line_bytes; the text is then capped and the rest of the line
        discarded. End-of-stream, even after a partial line, is a disconnect.
        """
        line = bytearray()
        overflow = False
        while True:
            self._drop_cr_continuation(self._pending)
            end = next((i for i, b in enumerate(self._pending) if b in (CR, LF)), -1)
            if end >= 0:
                part = self._pending[:end]
                self._after_cr = self._pending[end] == CR
                del self._pending[:end + 1]
            else:
                part = self._pending[:]
                self._pending.clear()

            room = self.max_line_bytes - len(line)
            if len(part) > room:
                overflow = True
                part = part[:room]
            line += part
            if end >= 0:
                return line.decode("utf-8", errors="replace").strip(), overflow

            self._pending += await self._recv()

    # -------------------------------------------------------------------------
    # states
    # -------------------------------------------------------------------------

    async def _menu(self) -> None:
        self.target = None
        await self._send(render_menu(self.id, self.book))
        raw, overflow = await self._read_line()

        choice = InvalidSelection(raw=raw) if overflow else self.book.select(raw)
        if isinstance(choice, InvalidSelection):
            self.log.debug("session %s invalid choice %r", self.id, choice.raw)
            await self._send(invalid_choice_notice(choice.raw))
            return

        self.target = choice
        self.state = SessionState.CONNECTING

    async def _await_connect(self, entry: AddressBookEntry) -> Tuple[Union[Endpoint, ConnectFailure], bytes]:
        """
        Connect while watching the inbound stream: an inbound disconnect aborts
        the attempt, and bytes typed meanwhile are returned for forwarding.
        """
        connect_task = asyncio.create_task(self.connector.connect(entry))
        self._drop_cr_continuation(self._pending)
        typeahead = self._pending
        self._pending = bytearray()
        ok = False
        try:
            while not connect_task.done():
                watch = asyncio.create_task(self.inbound.reader.read(self.chunk_size))
                try:
                    await asyncio.wait({connect_task, watch}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if not watch.done():
                        watch.cancel()
                    await asyncio.gather(watch, return_exceptions=True)
                if watch.cancelled():
                    continue
                if watch.exception() is not None or not watch.result():
                    raise InboundDisconnect()
                data = bytearray(watch.result())
                self._drop_cr_continuation(data)
                typeahead += data
            self._after_cr = False
            res = connect_task.result()
            ok = True
            return res, bytes(typeahead)
        finally:
            if not ok:
                connect_task.cancel()
                done = await asyncio.gather(connect_task, return_exceptions=True)
                if isinstance(done[0], Endpoint):
                    await done[0].close()

    async def _connecting(self) -> None:
        entry = self.target
        assert entry is not None
        res, typeahead = await self._await_connect(entry)

        if isinstance(res, ConnectFailure):
            self.state = SessionState.MENU
            await self._send(connect_failed_notice(res))
            return

        self.outbound = res
        self.state = SessionState.BRIDGING
        await self._send(connecting_notice(entry))
        if typeahead:
            res.writer.write(typeahead)

    async def _bridging(self) -> None:
        entry, outbound = self.target, self.outbound
        assert entry is not None and outbound is not None
        self.log.info("session %s bridge connected to %s - %s", self.id, entry.label, entry.address)

        try:
            result = await self.bridge.run(self.inbound, outbound)
        finally:
            self.outbound = None

        self.bridges += 1
        self.bytes_in += result.bytes_a_to_b
        self.bytes_out += result.bytes_b_to_a
        self.last_result = result
        self.log.info(
            "session %s bridge disconnected from %s - %s %s",
            self.id, entry.label, entry.address, result.to_dict(),
        )

        inbound_gone = (
            result.closed_by == SIDE_A
            or result.error_side == SIDE_A
            or self.inbound.is_closing()
        )
        if inbound_gone:
            raise InboundDisconnect()

        self.state = SessionState.MENU
        await self._send(disconnected_notice(entry))

    # -------------------------------------------------------------------------
    # lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        self.log.info("session %s open peer=%s", self.id, self.inbound.peer())
        reason = "disconnected"
        try:
            while self.state is not SessionState.CLOSED:
                if self.state is SessionState.MENU:
                    await self._menu()
                elif self.state is SessionState.CONNECTING:
                    await self._connecting()
                elif self.state is SessionState.BRIDGING:
                    await self._bridging()
        except InboundDisconnect:
            pass
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception:
            reason = "error"
            self.log.exception("session %s failed in state %s", self.id, self.state.value)
        finally:
            await self.close()
            self.log.info("session %s closed reason=%s", self.id, reason)

    async def close(self) -> None:
        self.state = SessionState.CLOSED
        if self.outbound is not None:
            await self.outbound.close()
            self.outbound = None
        await self.inbound.close()
