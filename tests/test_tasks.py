from core.config import settings
from infrastructure.tasks.tasks import email as email_tasks
from infrastructure.tasks.utils.base_task import redact_kwargs


def _capture(monkeypatch):
    sent = []
    monkeypatch.setattr(email_tasks, "deliver", lambda to, subject, body: sent.append((to, subject, body)))
    return sent


def test_verification_email_carries_link(monkeypatch):
    monkeypatch.setattr(settings, "FRONTEND_URL", "https://vlogs.example/")
    sent = _capture(monkeypatch)

    email_tasks.send_verification_email(user_id=1, email="amy@example.com", username="amy", token="abc123")

    (to, subject, body), = sent
    assert to == "amy@example.com"
    assert "Verify" in subject
    assert "https://vlogs.example/verify-email/abc123" in body


def test_welcome_email_is_delivered(monkeypatch):
    sent = _capture(monkeypatch)

    email_tasks.send_welcome_email(user_id=2, email="bo@example.com", username="bo")

    assert [to for to, _, _ in sent] == ["bo@example.com"]


def test_failure_logs_redact_tokens():
    redacted = redact_kwargs({"user_id": 1, "token": "secret", "email": "a@example.com"})

    assert redacted == {"user_id": 1, "token": "***", "email": "a@example.com"}
