"""
Minimal n3x relay: stores signed events, answers REQ queries and pushes new
events to live subscriptions. One thread per client connection.
"""
import argparse, logging, socket, threading
from typing import Any, List, Optional

from n3x_common.events import Event, InvalidEvent, verify_event
from n3x_common.filters import Filter
from n3x_common.protocol import (
    CLOSE, EOSE, EVENT, NOTICE, OK, REQ, ProtocolError, forget, recv_json,
)
from n3x_relay.state import Connection, RelayState

HOST = "0.0.0.0"
PORT = 8008

logger = logging.getLogger(__name__)


class RelayServer:
    def __init__(self, host: str = HOST, port: int = PORT):
        self.state = RelayState()
        self._srv = socket.create_server((host, port))
        self.host, self.port = self._srv.getsockname()[:2]
        self._thread: Optional[threading.Thread] = None
        self.running = False

    @property
    def url(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    def start(self) -> "RelayServer":
        ''' Accept connections on a background thread (used by tests and embedded runs) '''
        self.running = True
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        return self

    def serve_forever(self) -> None:
        self.running = True
        logger.info("relay listening on %s:%s", self.host, self.port)
        while self.running:
            try:
                conn, addr = self._srv.accept()
            except OSError:
                break   # listening socket closed by stop()
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            threading.Thread(target=self.handle_client, args=(conn, addr), daemon=True).start()

    def stop(self) -> None:
        self.running = False
        try:
            self._srv.shutdown(socket.SHUT_RDWR)   # wakes a blocked accept()
        except OSError:
            pass
        try:
            self._srv.close()
        except OSError:
            pass
        for c in list(self.state.connections):
            self._close(c)

    def handle_client(self, conn: socket.socket, addr) -> None:
        ''' This function serves one connected client until it disconnects '''
        c = Connection(addr=f"{addr[0]}:{addr[1]}", sock=conn)
        self.state.add_connection(c)
        logger.debug("client connected: %s", c.addr)
        try:
            while True:
                msg = recv_json(conn)
                self.handle_message(c, msg)
        except (ProtocolError, OSError) as e:
            logger.debug("client %s gone: %s", c.addr, e)
        finally:
            self.state.remove(c)
            self._close(c)

    def handle_message(self, c: Connection, msg: List[Any]) -> None:
        mtype = msg[0]
        if mtype == EVENT and len(msg) == 2:
            self.on_event(c, msg[1])
        elif mtype == REQ and len(msg) >= 3 and isinstance(msg[1], str):
            self.on_req(c, msg[1], msg[2:])
        elif mtype == CLOSE and len(msg) == 2 and isinstance(msg[1], str):
            self.state.close_subscription(c, msg[1])
        else:
            c.send([NOTICE, f"unsupported message: {mtype}"])

    def on_event(self, c: Connection, obj: Any) -> None:
        event_id = obj.get("id", "") if isinstance(obj, dict) else ""
        try:
            ev = Event.from_json(obj)
            verify_event(ev)
        except InvalidEvent as e:
            c.send([OK, event_id, False, f"invalid: {e}"])
            return

        accepted, message = self.state.store(ev)
        c.send([OK, ev.id, accepted, message])
        if not accepted or message.startswith("duplicate"):
            return

        # Fan out to live subscriptions, including the publisher's own
        for rcpt, sub_id in self.state.subscribers(ev):
            try:
                rcpt.send([EVENT, sub_id, ev.to_json()])
            except OSError:
                continue

    def on_req(self, c: Connection, sub_id: str, raw_filters: List[Any]) -> None:
        try:
            filters = [Filter.from_json(f) for f in raw_filters]
        except ValueError as e:
            c.send([NOTICE, f"invalid filter in {sub_id}: {e}"])
            return
        # register first so nothing published between query and EOSE is lost
        self.state.set_subscription(c, sub_id, filters)
        for ev in self.state.query(filters):
            c.send([EVENT, sub_id, ev.to_json()])
        c.send([EOSE, sub_id])

    def _close(self, c: Connection) -> None:
        forget(c.sock)
        try:
            c.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            c.sock.close()
        except OSError:
            pass


def main():
    ap = argparse.ArgumentParser(description="n3x relay")
    ap.add_argument("--host", default=HOST, help="Address to listen on")
    ap.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    ap.add_argument("--log-level", default="INFO", help="Logging level")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    server = RelayServer(args.host, args.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()

if __name__ == "__main__":
    main()
