from __future__ import annotations

import logging

import pytest

from rvchat.directory import Directory
from rvchat.server import Dispatcher

ALICE_ADDR = ("10.0.0.5", 40000)
BOB_ADDR = ("10.0.0.6", 40001)


@pytest.fixture
def directory():
    return Directory(timeout_s=30.0)


@pytest.fixture
def dispatcher(directory):
    return Dispatcher(directory)


def test_register_uses_source_ip(dispatcher, directory):
    reply = dispatcher.handle(b"REGISTER:alice,5000", ALICE_ADDR)
    assert reply == b"SUCCESS:Registration successful"
    rec = directory.get("alice")
    assert (rec.address, rec.port) == ("10.0.0.5", 5000)


def test_duplicate_register_is_rejected(dispatcher, directory):
    dispatcher.handle(b"REGISTER:carol,5000", ALICE_ADDR)
    reply = dispatcher.handle(b"REGISTER:carol,5001", BOB_ADDR)
    assert reply == b"ERROR:Username already taken"
    assert directory.get("carol").address == "10.0.0.5"


def test_get_users_lists_everyone_including_requester(dispatcher):
    dispatcher.handle(b"REGISTER:alice,5000", ALICE_ADDR)
    dispatcher.handle(b"REGISTER:bob,6000", BOB_ADDR)
    reply = dispatcher.handle(b"GET_USERS:", ALICE_ADDR)
    assert reply == b"USERS:alice,10.0.0.5,5000;bob,10.0.0.6,6000;"


def test_get_users_on_empty_directory(dispatcher):
    assert dispatcher.handle(b"GET_USERS:", ALICE_ADDR) == b"USERS:"


def test_heartbeat_has_no_reply(dispatcher, directory):
    dispatcher.handle(b"REGISTER:alice,5000", ALICE_ADDR)
    before = directory.get("alice").last_seen
    assert dispatcher.handle(b"HEARTBEAT:alice", ALICE_ADDR) is None
    assert directory.get("alice").last_seen >= before
    assert dispatcher.handle(b"HEARTBEAT:ghost", ALICE_ADDR) is None


def test_logout_has_no_reply(dispatcher, directory):
    dispatcher.handle(b"REGISTER:alice,5000", ALICE_ADDR)
    assert dispatcher.handle(b"LOGOUT:alice", ALICE_ADDR) is None
    assert "alice" not in directory
    assert dispatcher.handle(b"LOGOUT:alice", ALICE_ADDR) is None


@pytest.mark.parametrize(
    "raw",
    [b"garbage", b"PING:x", b"REGISTER:alice", b"REGISTER:a,b,c", b"CHAT:bob:hello", b"SUCCESS:hi"],
)
def test_bad_or_foreign_datagrams_are_dropped(dispatcher, directory, raw):
    assert dispatcher.handle(raw, ALICE_ADDR) is None
    assert len(directory) == 0


def test_malformed_drop_is_logged(dispatcher, caplog):
    with caplog.at_level(logging.WARNING, logger="rvchat.server"):
        dispatcher.handle(b"no separator here", ALICE_ADDR)
    assert "malformed" in caplog.text
