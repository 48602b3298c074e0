"""Tests for per-account logging."""

import logging

from mailwarden.logging import get_account_logger, get_error_logger, reset_logging, setup_logging


class TestAccountLoggers:
    """Tests for log file routing."""

    def test_account_log_file(self, tmp_path) -> None:
        logger = get_account_logger("work")
        logger.info("Moved 42 to Newsletters")
        content = (tmp_path / "logs" / "mailwarden-work.log").read_text()
        assert "Moved 42 to Newsletters" in content

    def test_errors_copied_to_error_log(self, tmp_path) -> None:
        get_account_logger("work").error("FETCH failed")
        content = (tmp_path / "logs" / "mailwarden-error.log").read_text()
        assert "[work] FETCH failed" in content

    def test_info_not_in_error_log(self, tmp_path) -> None:
        get_account_logger("work").info("routine")
        get_error_logger()
        assert "routine" not in (tmp_path / "logs" / "mailwarden-error.log").read_text()

    def test_logger_cached_per_account(self) -> None:
        assert get_account_logger("work") is get_account_logger("work")
        assert get_account_logger("work") is not get_account_logger("personal")

    def test_unsafe_account_name(self, tmp_path) -> None:
        get_account_logger("me@example.com").info("hello")
        assert (tmp_path / "logs" / "mailwarden-me-example-com.log").exists()

    def test_level_filters_lower_records(self, tmp_path) -> None:
        reset_logging()
        setup_logging(log_dir=tmp_path / "quiet", log_level="WARNING")
        logger = get_account_logger("work")
        logger.info("hidden")
        logger.warning("shown")
        content = (tmp_path / "quiet" / "mailwarden-work.log").read_text()
        assert "hidden" not in content
        assert "shown" in content

    def test_foreign_handlers_do_not_block_setup(self, tmp_path) -> None:
        foreign = logging.NullHandler()
        raw = logging.getLogger("mailwarden.account.shared")
        raw.addHandler(foreign)
        try:
            get_account_logger("shared").error("APPEND failed")
            reset_logging()
            setup_logging(log_dir=tmp_path / "again")
            get_account_logger("shared").error("still logged")

            assert foreign in raw.handlers
            content = (tmp_path / "again" / "mailwarden-error.log").read_text()
            assert "[shared] still logged" in content
            assert (tmp_path / "again" / "mailwarden-shared.log").exists()
        finally:
            raw.removeHandler(foreign)
