"""
Tests for the stdlib-backed log sink.
"""

import logging

from taskexec.log import LABEL, SYSTEM, EngineLog


def test_messages_are_labelled(caplog):
    log = EngineLog()

    with caplog.at_level(logging.DEBUG, logger="taskexec"):
        log.info(LABEL, "Checking tasks to run")
        log.warning(LABEL, "Task a exceeded its timeout", "5s")
        log.system(LABEL, "System started")

    assert [r.getMessage() for r in caplog.records] == [
        "[TASK-EXECUTOR] Checking tasks to run",
        "[TASK-EXECUTOR] Task a exceeded its timeout: 5s",
        "[TASK-EXECUTOR] System started",
    ]
    assert caplog.records[2].levelno == SYSTEM
    assert caplog.records[2].levelname == "SYSTEM"


def test_exception_body_attaches_traceback(caplog):
    log = EngineLog(logging.getLogger("taskexec.test"))

    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        error = e

    with caplog.at_level(logging.ERROR, logger="taskexec.test"):
        log.error(LABEL, "Hook failed", error)

    record = caplog.records[0]
    assert record.getMessage() == "[TASK-EXECUTOR] Hook failed"
    assert record.exc_info[1] is error
