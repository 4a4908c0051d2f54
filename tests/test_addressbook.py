import json

import pytest

from telnet_gateway.addressbook import (
    DEFAULT_PORT,
    AddressBook,
    AddressBookEntry,
    InvalidSelection,
    parse_address,
    parse_selection,
)

from _support import default_book


def test_parse_address_with_and_without_port():
    assert parse_address("particlesbbs.dyndns.org:6400") == ("particlesbbs.dyndns.org", 6400)
    assert parse_address("bbs.example.com") == ("bbs.example.com", DEFAULT_PORT)
    assert parse_address("bbs.example.com:") == ("bbs.example.com", 23)
    assert parse_address("[::1]:2323") == ("::1", 2323)


@pytest.mark.parametrize("bad", ["", ":23", "host:abc", "host:0", "host:70000"])
def test_parse_address_rejects_malformed(bad):
    with pytest.raises(ValueError):
        parse_address(bad)


def test_entry_address_defaults_to_host_port():
    e = AddressBookEntry(index=0, label="X", host="example.org")
    assert e.port == 23
    assert e.address == "example.org:23"


def test_list_keeps_order_and_indices():
    book = default_book()
    entries = book.list()
    assert [e.index for e in entries] == [0, 1]
    assert [e.label for e in entries] == ["Particles", "Level29"]
    assert entries[0].host == "particlesbbs.dyndns.org"
    assert entries[0].port == 6400
    assert entries[0].address == "particlesbbs.dyndns.org:6400"


def test_resolve_valid_indices():
    book = default_book()
    for i in range(len(book)):
        assert book.resolve(i) is book.list()[i]


@pytest.mark.parametrize("index", [-1, 2, 99, "0", 0.0, None, True, [0]])
def test_resolve_not_found(index):
    assert default_book().resolve(index) is None


@pytest.mark.parametrize("raw,expected", [("0", 0), ("1", 1), (" 1 \r", 1), ("00", 0)])
def test_parse_selection_valid(raw, expected):
    assert parse_selection(raw, 2) == expected


@pytest.mark.parametrize("raw", ["", "2", "99", "-1", "abc", "1a", "+1", "1.0", "١", "0x1"])
def test_parse_selection_invalid(raw):
    res = parse_selection(raw, 2)
    assert isinstance(res, InvalidSelection)
    assert res.raw == raw.strip()


def test_select_echoes_trimmed_input():
    book = default_book()
    res = book.select("  99 \r\n")
    assert res == InvalidSelection(raw="99")
    assert book.select("1\r\n").label == "Level29"


def test_from_config_defaults_when_absent():
    book = AddressBook.from_config({})
    assert [e.label for e in book.list()] == ["Particles", "Level29"]


def test_from_config_inline_list():
    cfg = {"address_book": [{"label": "Local", "address": "127.0.0.1:2424"}, {"label": "Plain", "address": "bbs.local"}]}
    book = AddressBook.from_config(cfg)
    assert [(e.label, e.host, e.port) for e in book.list()] == [("Local", "127.0.0.1", 2424), ("Plain", "bbs.local", 23)]
    assert book.list()[1].address == "bbs.local"


def test_from_config_addresses_file(tmp_path):
    (tmp_path / "addresses.json").write_text(
        "// hosts\n{ addresses: [ { label: \"A\", address: \"a.example:1\" }, ], }\n",
        encoding="utf-8",
    )
    book = AddressBook.from_config({"addresses_filename": "addresses.json"}, base_dir=str(tmp_path))
    assert [(e.label, e.port) for e in book.list()] == [("A", 1)]


def test_from_config_missing_file(tmp_path):
    with pytest.raises(SystemExit):
        AddressBook.from_config({"addresses_filename": str(tmp_path / "nope.json")})


@pytest.mark.parametrize("items", [
    [],
    "not-a-list",
    [{"label": "NoAddress"}],
    [{"address": "x:1"}],
    [{"label": "Bad", "address": "x:99999"}],
    ["x:1"],
])
def test_from_config_rejects_bad_entries(items):
    with pytest.raises(SystemExit):
        AddressBook.from_config(json.loads(json.dumps({"address_book": items})))
