"""Unit tests for core/mailer.py -- SMTP transport. smtplib.SMTP is replaced; no network."""

import smtplib

import pytest

import core.mailer as mailer
from core.config import Settings
from core.mailer import DisabledTransport, SmtpTransport, build_transport


class FakeSMTP:
    instances: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg):
        self.messages.append(msg)


class RefusingSMTP(FakeSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPRecipientsRefused({"eve@hospital.example": (550, b"no such user")})


@pytest.fixture(autouse=True)
def _reset_fake():
    FakeSMTP.instances = []


class TestSmtpTransport:
    def test_sends_one_message_to_all_recipients(self, monkeypatch):
        monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
        transport = SmtpTransport("smtp.hospital.example", user="biomed", password="pw", sender="biomed@hospital.example")

        ok = transport.send(["eve@hospital.example", "mia@hospital.example"], "PM due", "Ventilator PM on Friday")

        assert ok is True
        smtp = FakeSMTP.instances[0]
        assert smtp.started_tls is True
        assert smtp.logged_in == ("biomed", "pw")
        msg = smtp.messages[0]
        assert msg["To"] == "eve@hospital.example, mia@hospital.example"
        assert msg["Subject"] == "PM due"
        assert msg["From"] == "biomed@hospital.example"

    def test_delivery_failure_returns_false(self, monkeypatch):
        monkeypatch.setattr(mailer.smtplib, "SMTP", RefusingSMTP)
        assert SmtpTransport("smtp.hospital.example").send(["eve@hospital.example"], "s", "b") is False

    def test_unreachable_server_returns_false(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(mailer.smtplib, "SMTP", refuse)
        assert SmtpTransport("smtp.hospital.example").send(["eve@hospital.example"], "s", "b") is False

    def test_no_recipients_sends_nothing(self, monkeypatch):
        monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
        assert SmtpTransport("smtp.hospital.example").send(["", None], "s", "b") is False
        assert FakeSMTP.instances == []

    def test_header_injection_returns_false(self, monkeypatch):
        monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
        transport = SmtpTransport("smtp.hospital.example")
        assert transport.send(["eve@hospital.example"], "Pump\nB overdue", "body") is False
        assert FakeSMTP.instances == []


class TestBuildTransport:
    def test_disabled_without_host(self):
        transport = build_transport(Settings(smtp_host=""))
        assert isinstance(transport, DisabledTransport)
        assert transport.send(["eve@hospital.example"], "s", "b") is False

    def test_smtp_with_host(self):
        transport = build_transport(Settings(smtp_host="smtp.hospital.example", smtp_port=2525))
        assert isinstance(transport, SmtpTransport)
        assert transport.port == 2525
