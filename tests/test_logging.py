"""
Tests for logging setup and tagged output.

Verifies that:
- setup_logging writes to a rotating image_worker.log
- Verbose mode is reported globally
- PERF-tagged records get their own console color
- Cache statistics are logged only with PERF metrics enabled
"""
import logging

import pytest

from core.logging import logger as logger_module
from core.logging.logger import (
    ColoredFormatter,
    is_perf_metrics_enabled,
    is_verbose_logging,
    set_perf_metrics_enabled,
    setup_logging,
)
from core.logging.tags import TAG_PERF
from utils.image_cache import ImageCache, MemoryImageCache


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    verbose = logger_module._VERBOSE
    perf = is_perf_metrics_enabled()
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logger_module._VERBOSE = verbose
    set_perf_metrics_enabled(perf)


def _record(msg, level=logging.INFO):
    return logging.LogRecord(name="test", level=level, pathname="", lineno=0,
                             msg=msg, args=(), exc_info=None)


def test_setup_logging_writes_file(tmp_path, restore_logging):
    log_dir = tmp_path / "logs"
    setup_logging(debug=False, log_dir=log_dir)
    logging.getLogger("engine.image_worker").info("hello from the worker")
    for handler in logging.getLogger().handlers:
        handler.flush()

    log_file = log_dir / "image_worker.log"
    assert log_file.exists()
    assert "hello from the worker" in log_file.read_text(encoding="utf-8")
    assert is_verbose_logging() is False


def test_verbose_implies_debug(tmp_path, restore_logging):
    setup_logging(verbose=True, log_dir=tmp_path / "logs")
    assert is_verbose_logging() is True
    assert logging.getLogger().level == logging.DEBUG


def test_colored_formatter_highlights_perf():
    formatter = ColoredFormatter('%(levelname)s %(message)s')
    perf = formatter.format(_record(f"{TAG_PERF} cache hit rate"))
    normal = formatter.format(_record("plain message"))
    assert ColoredFormatter.PERF_COLOR in perf
    assert ColoredFormatter.PERF_COLOR not in normal
    assert normal.endswith(ColoredFormatter.RESET)


def test_cache_stats_logged_only_with_perf_metrics(caplog, restore_logging):
    cache = ImageCache(MemoryImageCache(1024))
    cache.put_memory("k", b"v")
    cache.get_memory("k")

    set_perf_metrics_enabled(False)
    with caplog.at_level(logging.INFO):
        cache.get_stats()
    assert TAG_PERF not in caplog.text

    set_perf_metrics_enabled(True)
    with caplog.at_level(logging.INFO):
        stats = cache.get_stats()
    assert TAG_PERF in caplog.text
    assert stats['hits'] == 1
