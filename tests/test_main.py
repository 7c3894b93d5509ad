from __future__ import annotations

import pytest

from tennis_watch import main
from tennis_watch.config import Settings
from tennis_watch.errors import HardBlock
from tennis_watch.models import ScanResult, SlotRecord
from tennis_watch.notify import Notifier
from tests.helpers import RecordingMailer


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    monkeypatch.chdir(tmp_path)
    return Settings(RESEND_API_KEY="re_key", NOTIFY_EMAIL="me@example.com", NOTIFY_ON_ERROR=True)


@pytest.mark.asyncio
async def test_run_reports_failure_and_exits_non_zero(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    async def _blocked(_settings):  # noqa: ANN001
        raise HardBlock("TOP", url="https://resv.example.jp/", http_status=429)

    monkeypatch.setattr(main, "scan", _blocked)
    mailer = RecordingMailer()

    status = await main.run(settings, Notifier(mailer, "me@example.com", notify_on_error=True))

    assert status == main.EXIT_SCAN_FAILED
    assert len(mailer.sent) == 1
    assert "HardBlock" in mailer.sent[0][0]


@pytest.mark.asyncio
async def test_failed_mail_keeps_failure_status(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    async def _blocked(_settings):  # noqa: ANN001
        raise HardBlock("TOP")

    monkeypatch.setattr(main, "scan", _blocked)

    status = await main.run(settings, Notifier(RecordingMailer(fail=True), "me@example.com", notify_on_error=True))

    assert status == main.EXIT_SCAN_FAILED


@pytest.mark.asyncio
async def test_run_notifies_slots(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    result = ScanResult(
        slots=(SlotRecord("駒場", "1月21日(水)", "A面", "9:00-11:00"),),
        reached_url="https://resv.example.jp/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou",
    )

    async def _scan(_settings):  # noqa: ANN001
        return result

    monkeypatch.setattr(main, "scan", _scan)
    mailer = RecordingMailer()

    status = await main.run(settings, Notifier(mailer, "me@example.com"))

    assert status == main.EXIT_OK
    assert len(mailer.sent) == 1


def test_build_notifier_without_credentials(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    monkeypatch.delenv("NOTIFY_EMAIL", raising=False)

    notifier = main.build_notifier(Settings())

    assert notifier._mailer is None
