import datetime
import logging
from pathlib import Path

import pytest

from switchyard.logging_config import (
    DailyFolderBusinessFileHandler,
    DailyFolderFileHandler,
    infer_log_business,
)


def _fixed_now() -> datetime.datetime:
    return datetime.datetime(2025, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)


def _make_record(*, name: str, pathname: str, msg: str) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=pathname,
        lineno=123,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.mark.parametrize(
    "pathname, expected",
    [
        ("/srv/switchyard/services/provider_switching_service.py", "switching"),
        ("/srv/switchyard/services/context_preservation_service.py", "switching"),
        ("/srv/switchyard/services/pricing_service.py", "pricing"),
        ("/srv/switchyard/services/pricing_validator.py", "pricing"),
        ("/srv/switchyard/services/cost_tracker_service.py", "costs"),
        ("/srv/switchyard/services/provider_history_service.py", "history"),
        ("/srv/switchyard/provider/openai_compat.py", "provider"),
        ("/srv/switchyard/tasks/analytics.py", "tasks"),
        ("/srv/switchyard/db/session.py", "db"),
        ("/srv/switchyard/routes.py", "app"),
    ],
)
def test_infer_log_business(pathname: str, expected: str) -> None:
    record = _make_record(name="switchyard", pathname=pathname, msg="x")

    assert infer_log_business(record) == expected


def test_daily_folder_business_handler_routes_by_pathname(tmp_path: Path) -> None:
    handler = DailyFolderBusinessFileHandler(
        log_dir=tmp_path,
        backup_days=7,
        timezone_name="UTC",
        now_fn=_fixed_now,
    )
    handler.setFormatter(logging.Formatter("[%(biz)s] %(message)s"))

    handler.emit(
        _make_record(
            name="switchyard",
            pathname="/srv/switchyard/services/provider_switching_service.py",
            msg="switch hello",
        )
    )
    handler.emit(
        _make_record(
            name="switchyard",
            pathname="/srv/switchyard/services/cost_tracker_service.py",
            msg="cost hello",
        )
    )

    day_dir = tmp_path / "2025-01-02"
    assert (day_dir / "switching.log").read_text(encoding="utf-8").splitlines()[-1] == (
        "[switching] switch hello"
    )
    assert (day_dir / "costs.log").read_text(encoding="utf-8").splitlines()[-1] == (
        "[costs] cost hello"
    )
    handler.close()


def test_daily_folder_file_handler_writes_to_named_file(tmp_path: Path) -> None:
    handler = DailyFolderFileHandler(
        log_dir=tmp_path,
        filename="access.log",
        backup_days=7,
        timezone_name="UTC",
        now_fn=_fixed_now,
    )
    handler.setFormatter(logging.Formatter("[%(biz)s] %(message)s"))
    handler.addFilter(lambda record: setattr(record, "biz", "access") or True)

    handler.emit(
        _make_record(
            name="uvicorn.access",
            pathname="/usr/local/lib/python3.12/site-packages/uvicorn/protocols/http/h11_impl.py",
            msg="GET /health 200",
        )
    )

    content = (tmp_path / "2025-01-02" / "access.log").read_text(encoding="utf-8")
    assert "GET /health 200" in content
    handler.close()


def test_old_date_folders_are_removed(tmp_path: Path) -> None:
    for day in ("2024-12-01", "2024-12-02", "2024-12-03", "not-a-date"):
        (tmp_path / day).mkdir()

    handler = DailyFolderFileHandler(
        log_dir=tmp_path,
        filename="app.log",
        backup_days=2,
        timezone_name="UTC",
        now_fn=_fixed_now,
    )
    handler.close()

    remaining = sorted(p.name for p in tmp_path.iterdir())
    assert remaining == ["2024-12-03", "2025-01-02", "not-a-date"]
