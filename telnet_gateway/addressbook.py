"""
Static address book of remote hosts offered by the menu.

Entries are immutable and keep their configured order; an entry's index is its
position in the book. Selections come from untrusted remote text, so every
lookup path returns a value instead of raising.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .util import get_path, parse_jsonish

DEFAULT_PORT = 23

DEFAULT_ADDRESSES: Tuple[Tuple[str, str], ...] = (
    ("Particles", "particlesbbs.dyndns.org:6400"),
    ("Level29", "bbs.fozztexx.com:23"),
)


@dataclass(frozen=True)
class AddressBookEntry:
    index: int
    label: str
    host: str
    port: int = DEFAULT_PORT
    address: str = ""  # as written in config; rendered in menu and notices

    def __post_init__(self) -> None:
        if not self.address:
            object.__setattr__(self, "address", f"{self.host}:{self.port}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "host": self.host,
            "port": self.port,
            "address": self.address,
        }


@dataclass(frozen=True)
class InvalidSelection:
    raw: str


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split ``host[:port]``; port defaults to 23.
    Raises ValueError on an empty host or a port outside 1..65535.
    """
    text = str(address).strip()
    host, sep, port_s = text.rpartition(":")
    if not sep:
        host, port_s = text, ""
    host = host.strip()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        raise ValueError(f"missing host in address {address!r}")
    if not port_s.strip():
        return host, DEFAULT_PORT
    try:
        port = int(port_s)
    except ValueError:
        raise ValueError(f"bad port in address {address!r}") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range in address {address!r}")
    return host, port


def parse_selection(raw: str, size: int) -> Union[int, InvalidSelection]:
    """Total parse of a menu selection: a valid index or InvalidSelection."""
    text = raw.strip()
    if not text or not text.isascii() or not text.isdigit():
        return InvalidSelection(raw=text)
    idx = int(text)
    if idx >= size:
        return InvalidSelection(raw=text)
    return idx


class AddressBook:
    def __init__(self, entries: Sequence[AddressBookEntry]) -> None:
        self._entries: Tuple[AddressBookEntry, ...] = tuple(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def list(self) -> Tuple[AddressBookEntry, ...]:
        return self._entries

    def resolve(self, index: Any) -> Optional[AddressBookEntry]:
        # bool is an int subclass; True must not select entry 1
        if isinstance(index, bool) or not isinstance(index, int):
            return None
        if index < 0 or index >= len(self._entries):
            return None
        return self._entries[index]

    def select(self, raw: str) -> Union[AddressBookEntry, InvalidSelection]:
        parsed = parse_selection(raw, len(self._entries))
        if isinstance(parsed, InvalidSelection):
            return parsed
        entry = self.resolve(parsed)
        if entry is None:
            return InvalidSelection(raw=raw.strip())
        return entry

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[str, str]]) -> "AddressBook":
        entries: List[AddressBookEntry] = []
        for idx, (label, address) in enumerate(pairs):
            host, port = parse_address(address)
            entries.append(AddressBookEntry(index=idx, label=label, host=host, port=port, address=address))
        return cls(entries)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], *, base_dir: Optional[str] = None) -> "AddressBook":
        items = get_path(cfg, "address_book", None)
        source = "address_book"

        if items is None:
            fname = get_path(cfg, "addresses_filename", None)
            if fname:
                path = str(fname)
                if base_dir and not os.path.isabs(path):
                    path = os.path.join(base_dir, path)
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        raw = f.read()
                except OSError as e:
                    raise SystemExit(f"Cannot read address book {path}: {e}") from e
                items = parse_jsonish(raw, source=path).get("addresses")
                source = path

        if items is None:
            return cls.from_pairs(DEFAULT_ADDRESSES)

        if not isinstance(items, list) or not items:
            raise SystemExit(f"{source}: address book must be a non-empty list")

        pairs: List[Tuple[str, str]] = []
        for n, item in enumerate(items):
            if not isinstance(item, dict):
                raise SystemExit(f"{source}[{n}]: entry must be an object with label/address")
            label = str(item.get("label", "")).strip()
            address = str(item.get("address", "")).strip()
            if not label or not address:
                raise SystemExit(f"{source}[{n}]: label and address are required")
            pairs.append((label, address))

        try:
            return cls.from_pairs(pairs)
        except ValueError as e:
            raise SystemExit(f"{source}: {e}") from e
