import email
from email.message import EmailMessage

from farmcall import imap_listener
from farmcall.models import MarketEvent

from .test_parsers import HOMELY_BODY, HOMELY_SUBJECT


def _raw(subject, body, sender):
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = "agent@example.com"
    msg.set_content(body)
    return bytes(msg)


class FakeIMAP:
    def __init__(self, messages):
        self.messages = messages
        self.seen = []
        self.selected = None

    def login(self, username, password):
        pass

    def select(self, mailbox):
        self.selected = mailbox

    def search(self, charset, criterion):
        assert criterion == "UNSEEN"
        return "OK", [b" ".join(self.messages)]

    def fetch(self, msg_id, parts):
        return "OK", [(b"%s (RFC822)" % msg_id, self.messages[msg_id]), b")"]

    def store(self, msg_id, op, flag):
        self.seen.append((msg_id, flag))

    def close(self):
        pass

    def logout(self):
        pass


def test_process_message_ingests_routed_events(db, scorer, make_contact):
    make_contact(address="20 Smith St")
    report = imap_listener.process_message(db, HOMELY_SUBJECT, HOMELY_BODY, "Homely <alerts@homely.com.au>",
                                           scorer=scorer)
    assert report.inserted == 1
    ev = db.query(MarketEvent).one()
    assert ev.address == "12 SMITH ST, WILLOUGHBY"
    assert ev.top_contacts[0]["score"] >= 200


def test_process_message_ignores_unrelated_mail(db, scorer):
    report = imap_listener.process_message(db, "Invoice", "Please pay", "billing@example.com", scorer=scorer)
    assert report.inserted == 0
    assert db.query(MarketEvent).count() == 0


def test_process_mailbox_marks_messages_seen(db, scorer, monkeypatch):
    fake = FakeIMAP({
        b"1": _raw(HOMELY_SUBJECT, HOMELY_BODY, "Homely <alerts@homely.com.au>"),
        b"2": _raw("Lunch?", "Sandwiches at noon", "friend@example.com"),
        b"3": _raw(HOMELY_SUBJECT, HOMELY_BODY, "Homely <alerts@homely.com.au>"),
    })
    monkeypatch.setattr(imap_listener.imaplib, "IMAP4_SSL", lambda host, port: fake)

    report = imap_listener.process_mailbox(db, scorer=scorer)

    assert (report.inserted, report.skipped) == (1, 1)
    assert [m for m, _ in fake.seen] == [b"1", b"2", b"3"]
    assert fake.selected == "INBOX"


HOMELY_HTML = """<html><head><style>p { color: #333; }</style></head><body>
<p>Price guide <b>$2,100,000</b></p>
<p>4 bed 2 bath 2 car House</p>
<p><a href="https://www.homely.com.au/x">View on Homely</a></p>
</body></html>"""


def _raw_html(subject, html, sender):
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg.set_content(html, subtype="html")
    return bytes(msg)


def test_html_only_message_falls_back_to_rendered_text():
    msg = email.message_from_bytes(_raw_html(HOMELY_SUBJECT, HOMELY_HTML, "alerts@homely.com.au"))
    text = imap_listener._plain_text(msg)
    assert "color" not in text
    assert "4 bed 2 bath 2 car House" in text.splitlines()
    assert "$2,100,000" in text


def test_html_only_alert_is_ingested(db, scorer, monkeypatch):
    fake = FakeIMAP({b"1": _raw_html(HOMELY_SUBJECT, HOMELY_HTML, "Homely <alerts@homely.com.au>")})
    monkeypatch.setattr(imap_listener.imaplib, "IMAP4_SSL", lambda host, port: fake)

    report = imap_listener.process_mailbox(db, scorer=scorer)

    assert report.inserted == 1
    ev = db.query(MarketEvent).one()
    assert (ev.beds, ev.baths, ev.cars, ev.price) == (4, 2, 2, "$2,100,000")
