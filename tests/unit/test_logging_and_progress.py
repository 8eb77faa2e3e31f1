from __future__ import annotations

import logging

from roster_import.logging.init import get_logger, log_summary, setup_logging
from roster_import.services.progress import ProgressTracker


def test_labeled_output(capsys):
    logger = setup_logging()
    logger.info("hello")
    logger.warning("careful")
    logger.error("broken")
    log_summary("records=1 imported=1")
    out = capsys.readouterr().out.splitlines()
    assert out == ["INFO hello", "WARN careful", "ERROR broken", "SUMMARY records=1 imported=1"]


def test_module_loggers_propagate_to_app_logger(capsys):
    setup_logging()
    logging.getLogger("roster_import.services.dispatcher").info("from module")
    assert capsys.readouterr().out.strip() == "INFO from module"


def test_debug_flag_and_idempotence(capsys):
    first = setup_logging()
    first.debug("hidden")
    second = setup_logging(debug=True)
    assert first is second
    assert len(second.handlers) == 1
    get_logger().debug("shown")
    assert capsys.readouterr().out.strip() == "DEBUG shown"


def test_progress_tracker_is_a_progress_sink():
    with ProgressTracker(enabled=False) as progress:
        for pct in (33, 67, 67, 50, 100, 250):
            progress(pct)
        assert progress.percent == 100
        assert progress.history == [33, 67, 67, 50, 100, 100]
        assert progress.pbar is None
