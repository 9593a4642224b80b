"""
tests/test_mailer.py -- Email templates and transport selection.
"""

from core.mailer import LogMailer, Mailer, SmtpMailer, build_mailer, render


class FailingMailer(Mailer):
    def deliver(self, message):
        raise OSError("connection refused")


def test_reset_template_renders_link_and_escapes_name():
    html = render("reset_password.html", name="<b>Dana</b>", reset_url="https://x.test/r?token=abc", ttl_minutes=60)
    assert "https://x.test/r?token=abc" in html
    assert "&lt;b&gt;Dana&lt;/b&gt;" in html
    assert "60" in html


def test_success_template_renders():
    assert "Dana" in render("password_reset_success.html", name="Dana")


def test_log_mailer_reports_success():
    mailer = LogMailer("no-reply@x.test", "AgentPro")
    assert mailer.send("a@x.test", "subject", "password_reset_success.html", name="A") is True


def test_delivery_failure_returns_false():
    mailer = FailingMailer("no-reply@x.test", "AgentPro")
    assert mailer.send("a@x.test", "subject", "password_reset_success.html", name="A") is False


def test_build_mailer_picks_transport(env):
    assert isinstance(build_mailer(env.settings), LogMailer)
    smtp_settings = env.settings.model_copy(update={"smtp_host": "smtp.x.test"})
    assert isinstance(build_mailer(smtp_settings), SmtpMailer)
