from __future__ import annotations

import socket
import threading

import pytest

from rvchat.directory import Directory
from rvchat.net import UdpEndpoint
from rvchat.server import RendezvousServer
from rvchat.session import SessionState

from conftest import wait_for


@pytest.fixture
def server():
    udp = UdpEndpoint.listening("127.0.0.1", 0, poll_interval_s=0.05)
    srv = RendezvousServer(udp, Directory(timeout_s=30.0), workers=4, reap_interval_s=0.1)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    yield srv
    srv.shutdown()
    t.join(timeout=3.0)
    assert not t.is_alive()


def test_register_lands_in_directory(server, make_session):
    alice = make_session("alice", server.address)
    alice.start()

    snap = server.directory.snapshot()
    port = alice.udp.local_address[1]
    assert [(r.username, r.address, r.port) for r in snap] == [("alice", "127.0.0.1", port)]


def test_query_returns_other_peer(server, make_session):
    bob = make_session("bob", server.address)
    bob.start()
    alice = make_session("alice", server.address)
    alice.start()

    alice.request_users()

    bob_port = bob.udp.local_address[1]
    assert wait_for(lambda: alice.peers.resolve("bob") == ("127.0.0.1", bob_port))
    assert "alice" not in alice.peers


def test_chat_is_delivered_directly(server, make_session):
    bob = make_session("bob", server.address)
    bob.start()
    alice = make_session("alice", server.address)
    alice.start()
    assert wait_for(lambda: "bob" in alice.peers)

    alice.send_chat("bob", "hi bob: lunch?")

    assert wait_for(lambda: "alice: hi bob: lunch?" in bob.display.lines)


def test_chat_to_logged_out_peer_is_silently_lost(server, make_session):
    bob = make_session("bob", server.address)
    bob.start()
    alice = make_session("alice", server.address)
    alice.start()
    assert wait_for(lambda: "bob" in alice.peers)

    bob.logout()
    assert wait_for(lambda: "bob" not in server.directory)

    # stale cache entry: the send goes out and nothing comes back
    alice.send_chat("bob", "are you there?")
    assert alice.state is SessionState.ACTIVE
    assert "bob" in alice.peers


def test_simultaneous_claims_for_one_name(server, raw_socket):
    claimants = [raw_socket(), raw_socket()]
    barrier = threading.Barrier(len(claimants))
    replies = []

    def claim(sock: socket.socket) -> None:
        port = sock.getsockname()[1]
        barrier.wait()
        sock.sendto(f"REGISTER:carol,{port}".encode(), server.address)
        replies.append(sock.recvfrom(1024)[0])

    threads = [threading.Thread(target=claim, args=(s,)) for s in claimants]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=3.0)

    assert sorted(replies) == [b"ERROR:Username already taken", b"SUCCESS:Registration successful"]
    assert len(server.directory) == 1


def test_silent_peer_is_reaped(make_session):
    udp = UdpEndpoint.listening("127.0.0.1", 0, poll_interval_s=0.05)
    srv = RendezvousServer(udp, Directory(timeout_s=0.3), workers=2, reap_interval_s=0.05)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    try:
        ghost = make_session("ghost", srv.address, heartbeat_interval_s=60.0)
        alive = make_session("alive", srv.address, heartbeat_interval_s=0.05)
        ghost.start()
        alive.start()

        assert wait_for(lambda: "ghost" not in srv.directory._records)
        assert "alive" in srv.directory
    finally:
        srv.shutdown()
        t.join(timeout=3.0)


def test_garbage_does_not_stop_the_server(server, raw_socket, make_session):
    noise = raw_socket()
    for raw in (b"", b"nonsense", b"REGISTER:x", b"\xff\xfe", b"CHAT:a:b"):
        noise.sendto(raw, server.address)

    alice = make_session("alice", server.address)
    alice.start()
    assert alice.state is SessionState.ACTIVE
