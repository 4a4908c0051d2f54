"""
Listener, session registry and lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .addressbook import AddressBook
from .bridge import Bridge
from .connector import Endpoint, TargetConnector
from .session import MenuSession
from .util import utc_iso


class SessionRegistry:
    """Live sessions by id. Mutations are serialized by an asyncio.Lock."""

    def __init__(self) -> None:
        self._sessions: Dict[str, MenuSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

        self.sessions_total = 0
        self.bridges_total = 0
        self.bytes_in = 0
        self.bytes_out = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def add(self, session: MenuSession, task: Optional[asyncio.Task]) -> None:
        async with self._lock:
            self._sessions[session.id] = session
            if task is not None:
                self._tasks[session.id] = task
            self.sessions_total += 1

    async def remove(self, session: MenuSession) -> None:
        async with self._lock:
            if self._sessions.pop(session.id, None) is None:
                return
            self._tasks.pop(session.id, None)
            self.bridges_total += session.bridges
            self.bytes_in += session.bytes_in
            self.bytes_out += session.bytes_out

    async def snapshot(self) -> List[Tuple[MenuSession, Optional[asyncio.Task]]]:
        async with self._lock:
            return [(s, self._tasks.get(sid)) for sid, s in self._sessions.items()]

    def sessions(self) -> List[MenuSession]:
        return list(self._sessions.values())


class GatewayServer:
    def __init__(
        self,
        *,
        book: AddressBook,
        connector: Optional[TargetConnector] = None,
        bridge: Optional[Bridge] = None,
        log: Optional[logging.Logger] = None,
        max_line_bytes: int = 1024,
        chunk_size: int = 65536,
    ) -> None:
        self.book = book
        self.log = log or logging.getLogger("telnet_gateway")
        self.connector = connector or TargetConnector(log=self.log.getChild("connector"))
        self.bridge = bridge or Bridge(chunk_size=chunk_size, log=self.log.getChild("bridge"))
        self.max_line_bytes = max_line_bytes
        self.chunk_size = chunk_size

        self.registry = SessionRegistry()
        self._server: Optional[asyncio.base_events.Server] = None
        self._stats_task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

    def gen_id(self) -> str:
        return str(uuid.uuid4())

    @property
    def sockets(self) -> List[Any]:
        return list(self._server.sockets or []) if self._server else []

    def bound_port(self) -> int:
        for sock in self.sockets:
            return int(sock.getsockname()[1])
        raise RuntimeError("server is not listening")

    async def start(self, host: str, port: int, *, stats_interval_sec: float = 0.0) -> None:
        self._server = await asyncio.start_server(self._handle_client, host=host, port=port)
        addrs = ", ".join(str(sock.getsockname()) for sock in self.sockets)
        self.log.info("listening on %s (%d address book entries)", addrs, len(self.book))
        if stats_interval_sec > 0:
            self._stats_task = asyncio.create_task(self._periodic_stats(stats_interval_sec))

    async def serve_forever(self) -> None:
        if self._server is None:
            raise RuntimeError("server is not started")
        await self._server.serve_forever()

    async def stop(self, drain_timeout: float = 0.0) -> None:
        """
        Stop accepting, give live sessions up to drain_timeout seconds to end on
        their own, then close their inbound connections and cancel them.
        """
        if self._server is not None:
            self._server.close()

        if self._stats_task is not None:
            self._stats_task.cancel()
            await asyncio.gather(self._stats_task, return_exceptions=True)
            self._stats_task = None

        if drain_timeout > 0 and len(self.registry):
            self.log.info("waiting up to %.1fs for %d session(s) to finish", drain_timeout, len(self.registry))
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                pass

        live = await self.registry.snapshot()
        for session, _task in live:
            await session.inbound.close()
        tasks = [t for _s, t in live if t is not None and t is not asyncio.current_task()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._server is not None:
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=0.5)
            except (asyncio.TimeoutError, Exception):
                pass

        self.log.info("stopped (%d session(s) force-closed)", len(live))

    def stats_snapshot(self) -> Dict[str, Any]:
        live = self.registry.sessions()
        return {
            "ts": utc_iso(),
            "sessions": len(live),
            "sessions_total": self.registry.sessions_total,
            "bridges_total": self.registry.bridges_total + sum(s.bridges for s in live),
            "bytes_in": self.registry.bytes_in + sum(s.bytes_in for s in live),
            "bytes_out": self.registry.bytes_out + sum(s.bytes_out for s in live),
        }

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.registry.sessions()]

    async def _periodic_stats(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.log.info("stats %s", self.stats_snapshot())

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session_id = self.gen_id()
        inbound = Endpoint(name=f"inbound:{session_id}", reader=reader, writer=writer)
        session = MenuSession(
            session_id=session_id,
            inbound=inbound,
            book=self.book,
            connector=self.connector,
            bridge=self.bridge,
            log=self.log.getChild("session"),
            max_line_bytes=self.max_line_bytes,
            chunk_size=self.chunk_size,
        )

        await self.registry.add(session, asyncio.current_task())
        self._idle.clear()
        try:
            await session.run()
        finally:
            await self.registry.remove(session)
            if not len(self.registry):
                self._idle.set()
