import json
import logging

from extsync.core.observability import SyncObserver, log_event


def test_log_event_text(settings, caplog):
    logger = logging.getLogger("extsync.test.obs")
    caplog.set_level(logging.INFO, logger="extsync.test.obs")
    log_event(logger, settings=settings, level=logging.INFO, event="process_start", extension="e1", operation="process")
    assert caplog.records[-1].getMessage() == "process_start extension=e1 operation=process"


def test_log_event_json(settings, caplog):
    s = settings.model_copy(update={"log_format": "json"})
    logger = logging.getLogger("extsync.test.obs")
    caplog.set_level(logging.INFO, logger="extsync.test.obs")
    log_event(logger, settings=s, level=logging.INFO, event="process_end", extension="e1", changed=True)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "process_end"
    assert payload["extension"] == "e1"
    assert payload["changed"] is True
    assert isinstance(payload["ts_ms"], int)


def test_observer_summary(settings, caplog):
    logger = logging.getLogger("extsync.test.obs")
    caplog.set_level(logging.INFO, logger="extsync.test.obs")
    obs = SyncObserver(settings=settings, logger=logger, extension="e1", operation="process_deletion")
    obs.start()
    summary = obs.end(status="FAILED", reason="boom")

    assert summary.status == "FAILED"
    assert summary.duration_ms >= 0
    assert summary.as_dict()["operation"] == "process_deletion"
    assert caplog.records[-1].levelno == logging.ERROR
