import logging

import pytest

from phpremote import config as config_module
from phpremote.config import DEFAULT_POLL_INTERVAL, load_config, setup_logging
from phpremote.errors import ConfigError


def test_defaults_without_binary_requirement():
    config = load_config({}, require_binary=False)
    assert config.host == 'localhost'
    assert config.port == 1337
    assert config.debug is False
    assert config.binary == 'php'
    assert config.timeout is None
    assert config.poll_interval == DEFAULT_POLL_INTERVAL
    assert config.address == 'localhost:1337'


def test_values_from_environment(tmp_path):
    config = load_config({
        'PHP_INTERPRETER_HOST': '0.0.0.0',
        'PHP_INTERPRETER_PORT': '9000',
        'PHP_INTERPRETER_DEBUG': '1',
        'PHP_INTERPRETER_BINARY': '/opt/php/bin/php',
        'PHP_INTERPRETER_TIMEOUT': '2.5',
        'PHP_INTERPRETER_POLL_INTERVAL': '0.1',
        'PHP_INTERPRETER_LOCK_FILE': str(tmp_path / 'x.lock'),
    })
    assert config.host == '0.0.0.0'
    assert config.port == 9000
    assert config.debug is True
    assert config.binary == '/opt/php/bin/php'
    assert config.timeout == 2.5
    assert config.poll_interval == 0.1
    assert config.lock_file == str(tmp_path / 'x.lock')


@pytest.mark.parametrize('value', ['0', 'false', 'off', ''])
def test_debug_flag_off_values(value):
    assert load_config({'PHP_INTERPRETER_DEBUG': value}, require_binary=False).debug is False


@pytest.mark.parametrize('name,value', [
    ('PHP_INTERPRETER_PORT', 'abc'),
    ('PHP_INTERPRETER_PORT', '-1'),
    ('PHP_INTERPRETER_TIMEOUT', 'soon'),
    ('PHP_INTERPRETER_TIMEOUT', '0'),
])
def test_invalid_numbers(name, value):
    with pytest.raises(ConfigError):
        load_config({name: value}, require_binary=False)


def test_missing_php_binary(monkeypatch):
    monkeypatch.setattr(config_module.shutil, 'which', lambda name: None)
    with pytest.raises(ConfigError):
        load_config({})


def test_php_binary_found_on_path(monkeypatch):
    monkeypatch.setattr(config_module.shutil, 'which', lambda name: '/usr/bin/php')
    assert load_config({}).binary == '/usr/bin/php'


def test_setup_logging_writes_log_file(tmp_path):
    log_file = tmp_path / 'logs' / 'daemon.log'
    logger = setup_logging(debug=True, log_file=str(log_file), console=False)
    try:
        assert logger.level == logging.DEBUG
        logging.getLogger('phpremote.test').debug('hello log')
        for handler in logger.handlers:
            handler.flush()
        assert 'DEBUG - hello log' in log_file.read_text()
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
