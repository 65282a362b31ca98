import logging

import pytest

from capsize.logger_setup import ColoredFormatter, _cleanup_old_logs, get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers, root.level = handlers, level


def test_get_logger_namespaces_under_package():
    assert get_logger().name == 'capsize'
    assert get_logger('worker').name == 'capsize.worker'
    assert get_logger('capsize.size_search').name == 'capsize.size_search'


def test_colored_formatter_keeps_record_plain():
    record = logging.LogRecord('capsize', logging.WARNING, __file__, 1, 'careful', None, None)

    text = ColoredFormatter('%(levelname)s %(message)s').format(record)

    assert 'careful' in text
    assert record.levelname == 'WARNING'


def test_setup_logging_writes_into_logs_dir(tmp_path):
    logs_dir = tmp_path / 'logs'

    logger = setup_logging(log_level='INFO', logs_dir=str(logs_dir))
    logging.getLogger('capsize.ffmpeg').debug('frame=1')
    logger.error('boom')
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert (logs_dir / 'capsize.log').exists()
    assert 'boom' in (logs_dir / 'errors.log').read_text()


def test_previous_run_rotated_and_pruned(tmp_path):
    logs_dir = tmp_path / 'logs'
    logs_dir.mkdir()
    for i in range(7):
        (logs_dir / f'capsize_{i}.log').write_text('old')

    _cleanup_old_logs(str(logs_dir), keep_count=5)

    assert len(list(logs_dir.glob('capsize_*.log'))) == 5
