import imaplib
from contextlib import contextmanager
from email.message import EmailMessage

import pytest

from mailbridge.config import Settings
from mailbridge.errors import TelegramAPIError


def build_raw_email(
    subject="Hello",
    body="Plain body",
    sender="Alice <alice@example.com>",
    to="bob@example.com",
    attachments=(),
    html=None,
    date="Mon, 05 Feb 2024 10:30:00 +0000",
):
    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    if to:
        msg["To"] = to
    if subject is not None:
        msg["Subject"] = subject
    msg["Date"] = date
    if body is not None:
        msg.set_content(body)
    if html is not None:
        if body is None:
            msg.set_content(html, subtype="html")
        else:
            msg.add_alternative(html, subtype="html")
    for filename, content in attachments:
        msg.add_attachment(
            content, maintype="application", subtype="octet-stream", filename=filename
        )
    return msg.as_bytes()


class FakeMailbox:
    """In-memory mailbox shared by every FakeImapConnection it hands out."""

    def __init__(self):
        self.messages = {}  # uid -> {"raw": bytes, "seen": bool}
        self.opened = 0
        self.closed = 0
        self.active = 0
        self.max_active = 0
        self.fail_connect = False
        self.fail_login = False
        self.fail_select = False
        self.fail_search = False
        self.fail_store = set()
        self.abort_fetch = set()
        self.unsolicited = []  # untagged lines the server slips into FETCH replies
        self.commands = []

    def add(self, uid, raw, seen=False):
        self.messages[uid] = {"raw": raw, "seen": seen}

    def unseen(self):
        return [uid for uid in sorted(self.messages) if not self.messages[uid]["seen"]]

    def is_seen(self, uid):
        return self.messages[uid]["seen"]

    def connect(self):
        if self.fail_connect:
            raise ConnectionRefusedError("connection refused")
        return FakeImapConnection(self)


class FakeImapConnection:
    def __init__(self, mailbox):
        self.mailbox = mailbox
        mailbox.opened += 1
        mailbox.active += 1
        mailbox.max_active = max(mailbox.max_active, mailbox.active)
        self.logged_out = False

    def login(self, user, password):
        if self.mailbox.fail_login:
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        return "OK", [b"Logged in"]

    def select(self, mailbox="INBOX", readonly=False):
        self.mailbox.commands.append(("SELECT", mailbox, readonly))
        if self.mailbox.fail_select:
            return "NO", [b"Mailbox does not exist"]
        return "OK", [str(len(self.mailbox.messages)).encode()]

    def uid(self, command, *args):
        self.mailbox.commands.append((command,) + args)
        if command == "SEARCH":
            if self.mailbox.fail_search:
                return "NO", [b"SEARCH failed"]
            return "OK", [" ".join(str(u) for u in self.mailbox.unseen()).encode()]
        if command == "FETCH":
            uid = int(args[0])
            if uid in self.mailbox.abort_fetch:
                raise imaplib.IMAP4.abort("socket error: EOF")
            if uid not in self.mailbox.messages:
                return "OK", [None]
            raw = self.mailbox.messages[uid]["raw"]
            seqno = sorted(self.mailbox.messages).index(uid) + 1
            header = f"{seqno} (UID {uid} RFC822.SIZE {len(raw)} BODY[] {{{len(raw)}}}".encode()
            return "OK", self.mailbox.unsolicited + [(header, raw), b")"]
        if command == "STORE":
            uid = int(args[0])
            if uid in self.mailbox.fail_store:
                return "NO", [b"STORE failed"]
            self.mailbox.messages[uid]["seen"] = True
            return "OK", [f"1 (UID {uid} FLAGS (\\Seen))".encode()]
        raise AssertionError(f"unexpected command {command}")

    def logout(self):
        if self.logged_out:
            raise imaplib.IMAP4.abort("already logged out")
        self.logged_out = True
        self.mailbox.active -= 1
        self.mailbox.closed += 1
        return "BYE", [b"Logging out"]


class FakeTelegramClient:
    """Records what would have been posted to the chat."""

    def __init__(self):
        self.messages = []
        self.documents = []
        self.events = []
        self.fail_text = False
        self.fail_documents = set()
        self.get_me_calls = 0
        self.channels_opened = 0
        self.channels_closed = 0
        self.channel_open = False
        self.sent_in_channel = []

    @contextmanager
    def channel(self):
        self.channels_opened += 1
        self.channel_open = True
        try:
            yield self
        finally:
            self.channel_open = False
            self.channels_closed += 1

    def get_me(self):
        self.get_me_calls += 1
        return {"id": 1, "username": "mail_bot"}

    def send_message(self, text, **kwargs):
        if self.fail_text:
            raise TelegramAPIError("sendMessage", "Bad Request: chat not found", 400)
        self.messages.append(text)
        self.sent_in_channel.append(self.channel_open)
        self.events.append(("text", text))
        return {"message_id": len(self.events)}

    def send_document(self, content, filename, caption=""):
        if filename in self.fail_documents:
            raise TelegramAPIError("sendDocument", "Request Entity Too Large", 413)
        self.documents.append((filename, content, caption))
        self.events.append(("document", filename))
        return {"message_id": len(self.events)}


def make_settings(**overrides):
    values = {
        "imap_host": "imap.example.com",
        "imap_user": "inbox@example.com",
        "imap_password": "secret",
        "telegram_bot_token": "123:ABC",
        "telegram_chat_id": "42",
        "item_spacing_ms": 0,
        "attachment_spacing_ms": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def telegram():
    return FakeTelegramClient()


@pytest.fixture
def raw_email():
    return build_raw_email


@pytest.fixture
def settings_factory():
    return make_settings
