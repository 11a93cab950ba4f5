import threading
from contextlib import contextmanager
from typing import Generic, Iterator, Optional, Set, TypeVar

S = TypeVar("S")


class SessionGate(Generic[S]):
    '''
    Exclusive access to the shared session.

    A user command and the handling of one notification each hold the gate
    for their whole duration. Waiters are served in arrival order (ticket
    lock), so neither the menu nor the dispatcher can starve the other.
    Not reentrant: code that already holds the gate gets the session passed in.
    '''
    def __init__(self, session: S):
        self._session = session
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._owner: Optional[int] = None
        self._skipped: Set[int] = set()

    def acquire(self, timeout: Optional[float] = None) -> bool:
        '''
        Wait for our turn.
        Output: True once held, False if timeout expired first (our ticket is given up)
        '''
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            got = self._cond.wait_for(lambda: self._serving == ticket and self._owner is None, timeout)
            if not got:
                self._abandon(ticket)
                return False
            self._owner = threading.get_ident()
            return True

    def release(self) -> None:
        with self._cond:
            if self._owner != threading.get_ident():
                raise RuntimeError("release() of a SessionGate not held by this thread")
            self._owner = None
            self._advance()

    def _abandon(self, ticket: int) -> None:
        # a timed-out ticket is always behind the one being served; skip it when its turn comes
        self._skipped.add(ticket)

    def _advance(self) -> None:
        self._serving += 1
        while self._serving in self._skipped:
            self._skipped.discard(self._serving)
            self._serving += 1
        self._cond.notify_all()

    @property
    def held(self) -> bool:
        with self._cond:
            return self._owner is not None

    @contextmanager
    def hold(self, timeout: Optional[float] = None) -> Iterator[S]:
        ''' with gate.hold() as session: ... '''
        if not self.acquire(timeout):
            raise TimeoutError("session is busy")
        try:
            yield self._session
        finally:
            self.release()
