"""
Bidirectional byte relay between two open endpoints.

Two copy tasks (a->b and b->a) run concurrently. Each one reads whatever is
available from its source and writes it verbatim to its destination, waiting on
the destination's drain() before the next read, so a stalled peer only stalls
its own direction and nothing is buffered without bound.

The first direction to finish (end-of-stream or I/O error) ends the bridge: the
other task is cancelled and awaited, then the bridge closes endpoint b. Endpoint
a belongs to the caller and is never closed here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .connector import Endpoint
from .util import monotime

SIDE_A = "a"
SIDE_B = "b"
CLOSED_BY_ERROR = "error"


@dataclass
class BridgeResult:
    closed_by: str  # a|b|error
    bytes_a_to_b: int = 0
    bytes_b_to_a: int = 0
    error: Optional[str] = None
    error_side: Optional[str] = None  # endpoint whose read/write failed
    duration_sec: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "closed_by": self.closed_by,
            "bytes_a_to_b": self.bytes_a_to_b,
            "bytes_b_to_a": self.bytes_b_to_a,
            "error": self.error,
            "error_side": self.error_side,
            "duration_sec": round(self.duration_sec, 3),
        }


@dataclass
class _Pipe:
    src: Endpoint
    dst: Endpoint
    src_side: str
    dst_side: str
    nbytes: int = 0
    error: Optional[str] = None
    error_side: Optional[str] = None


class Bridge:
    def __init__(self, *, chunk_size: int = 65536, log: Optional[logging.Logger] = None) -> None:
        self.chunk_size = chunk_size
        self.log = log or logging.getLogger("telnet_gateway.bridge")

    async def _copy(self, p: _Pipe) -> _Pipe:
        while True:
            try:
                data = await p.src.reader.read(self.chunk_size)
            except Exception as e:
                p.error, p.error_side = repr(e), p.src_side
                return p
            if not data:
                return p
            try:
                p.dst.writer.write(data)
                await p.dst.writer.drain()
            except Exception as e:
                p.error, p.error_side = repr(e), p.dst_side
                return p
            p.nbytes += len(data)

    async def run(self, a: Endpoint, b: Endpoint) -> BridgeResult:
        t0 = monotime()
        ab = _Pipe(src=a, dst=b, src_side=SIDE_A, dst_side=SIDE_B)
        ba = _Pipe(src=b, dst=a, src_side=SIDE_B, dst_side=SIDE_A)
        tasks: List[asyncio.Task] = [
            asyncio.create_task(self._copy(ab)),
            asyncio.create_task(self._copy(ba)),
        ]
        self.log.debug("bridge start %s <-> %s", a.name, b.name)

        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await b.close()

        finished = [t.result() for t in tasks if t in done]
        failed = [p for p in finished if p.error is not None]
        if failed:
            res = BridgeResult(closed_by=CLOSED_BY_ERROR, error=failed[0].error, error_side=failed[0].error_side)
        else:
            res = BridgeResult(closed_by=finished[0].src_side)

        res.bytes_a_to_b = ab.nbytes
        res.bytes_b_to_a = ba.nbytes
        res.duration_sec = monotime() - t0
        self.log.debug("bridge end %s <-> %s %s", a.name, b.name, res.to_dict())
        return res
