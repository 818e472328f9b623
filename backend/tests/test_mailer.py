import smtplib

import pytest

from mediashelf.clients.base import ImportSummaryMail
from mediashelf.clients.mailer import SmtpMailer, render_failure, render_summary


def _mailer(**overrides) -> SmtpMailer:
    kwargs = dict(
        host="smtp.test", port=465, user="bot@test", password="secret",
        sender="mediashelf <bot@test>", frontend_url="https://shelf.test/",
    )
    kwargs.update(overrides)
    return SmtpMailer(**kwargs)


def test_summary_lists_failed_titles_escaped_and_capped():
    failed = [{"title": f"Show <{i}>", "reason": "No matching title"} for i in range(25)]
    html = render_summary(
        "alice",
        ImportSummaryMail(imported=75, failed=25, not_found=25, total=100, failed_items=failed),
        "https://shelf.test/profile",
    )
    assert "Show &lt;0&gt; (No matching title)" in html
    assert "Show &lt;19&gt;" in html
    assert "Show &lt;20&gt;" not in html
    assert "... and 5 more" in html
    assert "<td>75%</td>" in html


def test_failure_body_escapes_error():
    html = render_failure("bob", "timeout <db>", "https://shelf.test/profile/import")
    assert "timeout &lt;db&gt;" in html


@pytest.mark.asyncio
async def test_unconfigured_mailer_skips_sending():
    mailer = _mailer(user=None, password=None)
    assert mailer.enabled is False
    assert await mailer.send_import_failure_email("a@test", "alice", "boom") is False


@pytest.mark.asyncio
async def test_delivery_success_and_failure(monkeypatch):
    mailer = _mailer()
    sent = []
    monkeypatch.setattr(mailer, "_deliver", lambda msg: sent.append(msg))

    summary = ImportSummaryMail(imported=1, failed=0, not_found=0, total=1)
    assert await mailer.send_import_summary_email("a@test", "alice", summary) is True
    assert sent[0]["To"] == "a@test"
    assert sent[0]["Subject"] == "MyAnimeList import finished"

    def refuse(msg):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(mailer, "_deliver", refuse)
    assert await mailer.send_import_summary_email("a@test", "alice", summary) is False
