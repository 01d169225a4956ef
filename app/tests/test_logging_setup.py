import logging

from boxsync.core.logging_setup import make_log_func, setup_logging


def test_log_func_routes_to_module_logger(caplog):
    log = make_log_func()

    with caplog.at_level(logging.INFO, logger="boxsync"):
        log("WARN", "sync", "upload_failed", '{"path": "a.csv"}')
        log("INFO", "sync", "run_finished")

    assert [(r.name, r.levelname, r.getMessage()) for r in caplog.records] == [
        ("boxsync.sync", "WARNING", 'upload_failed {"path": "a.csv"}'),
        ("boxsync.sync", "INFO", "run_finished"),
    ]


def test_setup_logging_writes_log_file(tmp_path):
    logfile = tmp_path / "logs" / "boxsync.log"
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        setup_logging("info", str(logfile))
        make_log_func()("ERROR", "sync", "run_failed", "boom")
        for h in root.handlers:
            h.flush()
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved[0]:
            root.addHandler(h)
        root.setLevel(saved[1])

    text = logfile.read_text(encoding="utf-8")
    assert "[ERROR] [boxsync.sync] run_failed boom" in text
    assert "logging initialized" in text
