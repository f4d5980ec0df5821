import logging

import pytest

from relayout.log import LOGGER_NAME, die, setup_logging


def test_console_format(capsys):
    setup_logging('INFO')
    logging.getLogger('relayout.engine').info('hello')
    logging.getLogger('relayout.engine').debug('hidden')
    err = capsys.readouterr().err
    assert '[relayout] hello' in err
    assert 'hidden' not in err


def test_file_handler_adds_timestamp(tmp_path, capsys):
    log_file = tmp_path / 'relayout.log'
    logger = setup_logging('DEBUG', str(log_file))
    logger.debug('to file')
    for handler in logger.handlers:
        handler.flush()
    line = log_file.read_text(encoding='utf-8').strip()
    assert line.startswith('[') and line.endswith('] to file')


def test_setup_replaces_handlers():
    setup_logging('INFO')
    logger = setup_logging('WARNING')
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING


def test_die_exits_with_status_one(capsys):
    setup_logging('INFO')
    with pytest.raises(SystemExit) as exc:
        die('boom')
    assert exc.value.code == 1
    assert '[relayout] boom' in capsys.readouterr().err
    assert logging.getLogger(LOGGER_NAME).handlers
