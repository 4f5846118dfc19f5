import socket

import pytest

from utils.errors  import LineTooLong, TransportFailure
from utils.framing import SocketStream, WIRE_ENCODING


def test_recv_line_strips_crlf_and_lf(make_stream):
    stream = make_stream(b"first\r\nsecond\nthird\r\n")
    assert stream.recv_line() == "first"
    assert stream.recv_line() == "second"
    assert stream.recv_line() == "third"


def test_recv_line_keeps_bytes_exact(make_stream):
    raw = b"X-Name: caf\xe9 \xff\x00 end"
    stream = make_stream(raw + b"\r\n")
    assert stream.recv_line().encode(WIRE_ENCODING) == raw


def test_recv_line_too_long(make_stream):
    stream = make_stream(b"a" * 100 + b"\r\n")
    with pytest.raises(LineTooLong):
        stream.recv_line(max_len=50)


def test_recv_line_too_long_without_newline():
    writer, reader = socket.socketpair()
    try:
        reader.settimeout(5)
        writer.sendall(b"a" * 200)
        with pytest.raises(LineTooLong):
            SocketStream(reader, buffer_size=16).recv_line(max_len=50)
    finally:
        writer.close()
        reader.close()


def test_recv_line_at_eof(make_stream):
    stream = make_stream(b"partial")
    with pytest.raises(TransportFailure):
        stream.recv_line()


def test_recv_exact_across_reads():
    writer, reader = socket.socketpair()
    try:
        reader.settimeout(5)
        stream = SocketStream(reader, buffer_size=4)
        writer.sendall(b"0123456789")
        assert stream.recv_exact(3) == b"012"
        assert stream.recv_exact(7) == b"3456789"
    finally:
        writer.close()
        reader.close()


def test_recv_exact_short(make_stream):
    stream = make_stream(b"abc")
    with pytest.raises(TransportFailure):
        stream.recv_exact(10)


def test_recv_some_prefers_buffer_then_eof(make_stream):
    stream = make_stream(b"line\r\nrest")
    assert stream.recv_line() == "line"
    assert stream.recv_some() == b"rest"
    assert stream.recv_some() == b""


def test_drain_returns_read_ahead(make_stream):
    stream = make_stream(b"CONNECT x:443 HTTP/1.1\r\n\r\nhello")
    stream.recv_line()
    stream.recv_line()
    assert stream.drain() == b"hello"
    assert stream.drain() == b""


def test_send_all_delivers_everything():
    a, b = socket.socketpair()
    try:
        b.settimeout(5)
        payload = bytes(range(256)) * 100
        SocketStream(a).send_all(payload)
        a.shutdown(socket.SHUT_WR)
        received = b""
        while len(received) < len(payload):
            chunk = b.recv(65536)
            if not chunk:
                break
            received += chunk
        assert received == payload
    finally:
        a.close()
        b.close()


def test_send_all_on_closed_socket():
    a, b = socket.socketpair()
    b.close()
    a.close()
    with pytest.raises(TransportFailure):
        SocketStream(a).send_all(b"data")
