"""
telnet_gateway

Line-based TCP gateway: inbound users pick a host from an address book and the
gateway relays raw bytes between them and an outbound TCP connection until
either side closes, then returns the user to the menu.
"""

from .addressbook import AddressBook, AddressBookEntry, InvalidSelection, parse_address, parse_selection
from .bridge import Bridge, BridgeResult
from .connector import ConnectFailure, Endpoint, TargetConnector
from .server import GatewayServer, SessionRegistry
from .session import InboundDisconnect, MenuSession, SessionState, render_menu

__version__ = "0.1.0"

__all__ = [
    "AddressBook",
    "AddressBookEntry",
    "Bridge",
    "BridgeResult",
    "ConnectFailure",
    "Endpoint",
    "GatewayServer",
    "InboundDisconnect",
    "InvalidSelection",
    "MenuSession",
    "SessionRegistry",
    "SessionState",
    "TargetConnector",
    "parse_address",
    "parse_selection",
    "render_menu",
]
