"""IMAP session handling: connect, select, search, fetch and flag messages."""

from __future__ import annotations

import imaplib
import logging
import re
import ssl
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional, Tuple

from .config import Settings
from .errors import AckError, FetchError, ProtocolError, StoreConnectionError
from .message_parser import parse_message
from .models import Message, MessageUid, SequenceNumber

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], imaplib.IMAP4]

# Errors that mean the connection itself is unusable.
_TRANSPORT_ERRORS = (imaplib.IMAP4.abort, OSError, EOFError)

_SEQ_RE = re.compile(rb"^\s*(\d+)\s+\(")
_UID_RE = re.compile(rb"\bUID\s+(\d+)")
_SIZE_RE = re.compile(rb"\bRFC822\.SIZE\s+(\d+)")


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    INBOX_SELECTED = "inbox_selected"
    SEARCHED = "searched"
    FAILED = "failed"


# (state, operation) -> next state on success. Anything missing is not allowed.
_TRANSITIONS = {
    (SessionState.DISCONNECTED, "connect"): SessionState.CONNECTED,
    (SessionState.CONNECTED, "select"): SessionState.INBOX_SELECTED,
    (SessionState.INBOX_SELECTED, "search"): SessionState.SEARCHED,
    (SessionState.SEARCHED, "fetch"): SessionState.SEARCHED,
    (SessionState.INBOX_SELECTED, "store"): SessionState.INBOX_SELECTED,
}


def transition(state: SessionState, operation: str, ok: bool) -> SessionState:
    """Next session state after ``operation``.

    ``ok`` means the connection survived the operation. A fetch that found a
    vanished or malformed message is still ``ok``; a dropped socket is not.
    """
    if operation == "disconnect":
        return SessionState.DISCONNECTED
    if (state, operation) not in _TRANSITIONS:
        raise ValueError(f"{operation} is not allowed in state {state.value}")
    if not ok:
        return SessionState.FAILED
    return _TRANSITIONS[(state, operation)]


def _quote_mailbox(name: str) -> str:
    if name.startswith('"') or not re.search(r'[\s"\\]', name):
        return name
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class ImapSession:
    """One IMAP connection; never reused across cycles."""

    def __init__(self, settings: Settings, connection_factory: ConnectionFactory) -> None:
        self.settings = settings
        self._factory = connection_factory
        self.conn: Optional[imaplib.IMAP4] = None
        self.state = SessionState.DISCONNECTED

    def _guard(self, operation: str, error_cls, *args) -> None:
        if (self.state, operation) not in _TRANSITIONS:
            raise error_cls(f"cannot {operation} while session is {self.state.value}", *args)

    def _advance(self, operation: str, ok: bool) -> None:
        self.state = transition(self.state, operation, ok)

    def connect(self) -> None:
        self._guard("connect", StoreConnectionError)
        try:
            self.conn = self._factory()
            self.conn.login(self.settings.imap_user, self.settings.imap_password)
        except (imaplib.IMAP4.error, OSError, EOFError) as exc:
            self._advance("connect", False)
            logger.error("IMAP connection error: %s", exc)
            raise StoreConnectionError(
                f"Cannot log in to {self.settings.imap_host}:{self.settings.imap_port}: {exc}"
            ) from exc
        self._advance("connect", True)
        logger.info("Connected to IMAP server %s", self.settings.imap_host)

    def select_inbox(self) -> int:
        """Open the configured mailbox read/write and return its message count."""
        self._guard("select", ProtocolError)
        mailbox = self.settings.imap_mailbox
        try:
            typ, data = self.conn.select(_quote_mailbox(mailbox), readonly=False)
        except (imaplib.IMAP4.error, *_TRANSPORT_ERRORS) as exc:
            self._advance("select", False)
            raise ProtocolError(f"SELECT {mailbox} failed: {exc}") from exc
        if typ != "OK":
            self._advance("select", False)
            raise ProtocolError(f"SELECT {mailbox} returned {typ}: {data!r}")
        self._advance("select", True)
        try:
            return int(data[0])
        except (TypeError, ValueError, IndexError):
            return 0

    def list_unseen(self) -> list[MessageUid]:
        """UIDs of unseen messages in the order the server reports them."""
        self._guard("search", ProtocolError)
        try:
            typ, data = self.conn.uid("SEARCH", None, "UNSEEN")
        except (imaplib.IMAP4.error, *_TRANSPORT_ERRORS) as exc:
            self._advance("search", False)
            raise ProtocolError(f"UID SEARCH UNSEEN failed: {exc}") from exc
        if typ != "OK":
            self._advance("search", False)
            raise ProtocolError(f"UID SEARCH UNSEEN returned {typ}: {data!r}")
        self._advance("search", True)
        if not data or not data[0]:
            return []
        return [MessageUid(int(token)) for token in data[0].split()]

    def fetch(self, uid: MessageUid) -> Message:
        """Retrieve and parse one message without setting ``\\Seen``."""
        self._guard("fetch", FetchError, uid)
        logger.debug("Fetching email UID %s", uid)
        try:
            typ, data = self.conn.uid("FETCH", str(uid), "(UID RFC822.SIZE BODY.PEEK[])")
        except _TRANSPORT_ERRORS as exc:
            self._advance("fetch", False)
            raise FetchError(f"Fetch error: {exc}", uid=uid) from exc
        except imaplib.IMAP4.error as exc:
            self._advance("fetch", True)
            raise FetchError(f"Fetch error: {exc}", uid=uid) from exc
        self._advance("fetch", True)
        if typ != "OK":
            raise FetchError(f"Fetch error: server returned {typ}", uid=uid)

        seqno, reported_uid, raw = _split_fetch_response(data)
        if seqno is None and raw is None:
            raise FetchError("Email not found (may have been deleted)", uid=uid)
        if reported_uid is not None and reported_uid != uid:
            raise FetchError(f"Server answered with UID {reported_uid}", uid=uid)
        if not raw:
            raise FetchError("No email body found", uid=uid)

        message = parse_message(raw, reported_uid or uid)
        logger.info("Fetched email #%s (UID: %s): %r", seqno, message.uid, message.subject)
        return message

    def mark_seen(self, uid: MessageUid) -> None:
        self._guard("store", AckError, uid)
        try:
            typ, data = self.conn.uid("STORE", str(uid), "+FLAGS", r"(\Seen)")
        except _TRANSPORT_ERRORS as exc:
            self._advance("store", False)
            raise AckError(f"STORE failed: {exc}", uid=uid) from exc
        except imaplib.IMAP4.error as exc:
            self._advance("store", True)
            raise AckError(f"STORE failed: {exc}", uid=uid) from exc
        self._advance("store", True)
        if typ != "OK":
            raise AckError(f"STORE returned {typ}: {data!r}", uid=uid)
        logger.info("Email UID %s marked as read", uid)

    def disconnect(self) -> None:
        """Log out if connected. Safe to call more than once."""
        conn, self.conn = self.conn, None
        self.state = transition(self.state, "disconnect", True)
        if conn is None:
            return
        try:
            conn.logout()
        except (imaplib.IMAP4.error, *_TRANSPORT_ERRORS) as exc:
            logger.debug("IMAP logout failed: %s", exc)
        else:
            logger.debug("IMAP connection ended")


def _split_fetch_response(
    data: list,
) -> Tuple[Optional[SequenceNumber], Optional[MessageUid], Optional[bytes]]:
    """Pull sequence number, UID and literal out of an imaplib FETCH result.

    imaplib yields ``[(b'5 (UID 42 RFC822.SIZE 9 BODY[] {9}', b'<raw>'), b')']``;
    some servers put the UID after the literal, in the trailing chunk. Other
    bare lines are unsolicited responses about other messages (flag updates
    and the like) and are ignored.
    """
    seqno: Optional[SequenceNumber] = None
    uid: Optional[MessageUid] = None
    raw: Optional[bytes] = None
    meta = b""
    parts = list(data or [])
    for index, part in enumerate(parts):
        if isinstance(part, tuple) and len(part) >= 2:
            meta = bytes(part[0])
            raw = bytes(part[1]) if part[1] is not None else b""
            trailer = parts[index + 1] if index + 1 < len(parts) else None
            if isinstance(trailer, (bytes, bytearray)):
                meta += b" " + bytes(trailer)
            break
    if not meta.strip():
        return None, None, raw
    match = _SEQ_RE.match(meta)
    if match:
        seqno = SequenceNumber(int(match.group(1)))
    match = _UID_RE.search(meta)
    if match:
        uid = MessageUid(int(match.group(1)))
    size = _SIZE_RE.search(meta)
    if size and raw is not None and int(size.group(1)) != len(raw):
        logger.debug("RFC822.SIZE %s differs from fetched %s bytes", size.group(1), len(raw))
    return seqno, uid, raw


class MailSource:
    """Opens IMAP sessions for listing/fetching and for acknowledgments."""

    def __init__(
        self, settings: Settings, connection_factory: ConnectionFactory | None = None
    ) -> None:
        self.settings = settings
        self._factory = connection_factory or self._open_connection

    def _open_connection(self) -> imaplib.IMAP4:
        s = self.settings
        if s.imap_tls:
            return imaplib.IMAP4_SSL(
                s.imap_host,
                s.imap_port,
                ssl_context=ssl.create_default_context(),
                timeout=s.imap_timeout,
            )
        return imaplib.IMAP4(s.imap_host, s.imap_port, timeout=s.imap_timeout)

    @contextmanager
    def session(self) -> Iterator[ImapSession]:
        """Yield a fresh session that is always logged out on exit."""
        session = ImapSession(self.settings, self._factory)
        try:
            yield session
        finally:
            session.disconnect()

    def acknowledge(self, uid: MessageUid) -> None:
        """Flag one message as seen using a dedicated short-lived session."""
        with self.session() as session:
            try:
                session.connect()
                session.select_inbox()
            except (StoreConnectionError, ProtocolError) as exc:
                raise AckError(f"Cannot open session to mark UID {uid} seen: {exc}", uid=uid) from exc
            session.mark_seen(uid)
