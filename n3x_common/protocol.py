import json
import socket
from typing import Any, Dict, List

ENC = "utf-8"   # encoding for JSON text
DELIM = b"\n"    # one relay message per line
MAX_LINE = 1 << 20   # refuse lines over 1 MiB

# Relay message types. Client -> relay: EVENT, REQ, CLOSE.
# Relay -> client: EVENT (with subscription id), EOSE, OK, NOTICE.
EVENT = "EVENT"
REQ = "REQ"
CLOSE = "CLOSE"
EOSE = "EOSE"
OK = "OK"
NOTICE = "NOTICE"

_buffers: Dict[int, bytearray] = {}   # buffers(key: socket ID, value: bytearray) to store residual data
# between calls, so we return exactly one message per call even when several arrive in one recv().


class ProtocolError(ConnectionError):
    """Raised when the peer closes the connection or sends something that is not a relay message."""
    pass


def send_json(sock: socket.socket, msg: List[Any]) -> None:
    '''
    The function sends one relay message (a JSON array) over a socket.
    It adds a newline character \\n at the end of the message
    Inputs:
        - sock: socket.socket - the socket to send the data through
        - msg: list - e.g. ["EVENT", {...}]
    Output: None
    '''
    data = (json.dumps(msg, ensure_ascii=False, separators=(",", ":")) + "\n").encode(ENC)
    sock.sendall(data)

def recv_json(sock: socket.socket) -> List[Any]:
    '''
    The function receives one relay message from a socket. It reads data until it finds a
    newline character \\n, then decodes that line as a JSON array.
    Input:
        - sock: socket.socket - the socket to receive data from
    Output:
        - list - the received message, first element is the message type
    Raises ProtocolError when the socket is closed or the line is not a JSON array.
    '''
    fd = sock.fileno()   # get unique identifier (int ID) for this socket
    buf = _buffers.setdefault(fd, bytearray())  # get the existing buffer or create new buffer for this socket

    while True:
        nl = buf.find(DELIM)
        if nl != -1:  # one full message has arrived
            line_bytes = bytes(buf[:nl])
            del buf[:nl+1]         # remove that line and delimiter from the buffer
            try:
                msg = json.loads(line_bytes.decode(ENC))
            except (ValueError, RecursionError) as e:
                raise ProtocolError(f"invalid JSON line: {e}") from e
            if not isinstance(msg, list) or not msg or not isinstance(msg[0], str):
                raise ProtocolError("relay message must be a non-empty array starting with its type")
            return msg
        if len(buf) > MAX_LINE:
            raise ProtocolError("message too large")

        chunk = sock.recv(4096)   # read more bytes from the socket
        if not chunk:
            raise ProtocolError("socket closed")
        buf.extend(chunk)

def forget(sock: socket.socket) -> None:
    ''' Drop the residual buffer of a socket before it is closed (file descriptors get reused) '''
    try:
        _buffers.pop(sock.fileno(), None)
    except OSError:
        pass


def parse_address(url: str):
    '''
    This function parses a relay address.
    Input: "tcp://host:port" or "host:port"
    Output: (host, port) tuple
    Raises ValueError if the address cannot be parsed.
    '''
    rest = url.strip()
    if "://" in rest:
        scheme, rest = rest.split("://", 1)
        if scheme != "tcp":
            raise ValueError(f"unsupported relay scheme {scheme!r}")
    host, sep, port = rest.rstrip("/").rpartition(":")
    if not sep or not host:
        raise ValueError(f"relay address needs host:port, got {url!r}")
    return host.strip("[]"), int(port)
