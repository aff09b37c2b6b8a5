import logging

from logger import _LineFormatter, _MilestoneFilter, get_logger, info_domain, log_event


def _record(level: int, **extra) -> logging.LogRecord:
    record = logging.LogRecord("protocache.test", level, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_milestone_filter_only_passes_marked_info() -> None:
    milestone_filter = _MilestoneFilter()

    assert milestone_filter.filter(_record(logging.INFO)) is False
    assert milestone_filter.filter(_record(logging.INFO, milestone=True)) is True
    assert milestone_filter.filter(_record(logging.WARNING)) is True
    assert milestone_filter.filter(_record(logging.DEBUG)) is True


def test_compact_formatter_renders_stage_and_payload() -> None:
    formatter = _LineFormatter(datefmt="%H:%M:%S")
    record = _record(
        logging.INFO,
        component="protocache.store",
        stage="SNAPSHOT_UPDATED",
        payload={"count": 3},
    )

    rendered = formatter.format(record)

    assert "[INFO] [protocache.store] hello world" in rendered
    assert rendered.endswith('(stage=SNAPSHOT_UPDATED, count=3)')


def test_adapter_accepts_stage_keyword(caplog) -> None:
    caplog.set_level(logging.DEBUG)

    get_logger("protocache.test").warning("careful", stage="CHECK", payload={"n": 1})
    info_domain("protocache.test", "milestone", stage="DONE", size=2)
    log_event("ERROR", "protocache.test", "broken", stage="FAIL", extra={"code": "X"})

    by_message = {record.getMessage(): record for record in caplog.records}
    assert by_message["careful"].stage == "CHECK"
    assert by_message["careful"].payload == {"n": 1}
    assert by_message["milestone"].milestone is True
    assert by_message["milestone"].payload == {"size": 2}
    assert by_message["broken"].levelno == logging.ERROR
    assert by_message["broken"].payload == {"code": "X"}
    assert by_message["broken"].component == "protocache.test"
