import logging

import pytest

from polychart.config import Config
from polychart.utils import log_file_path, setup_logging


@pytest.fixture
def reset_logger():
    yield
    logger = logging.getLogger("polychart")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    for name in ("websockets", "urllib3", "asyncio"):
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_setup_logging_writes_per_ticker_file(tmp_path, reset_logger):
    config = Config()
    config.LOG_LEVEL = logging.DEBUG
    logger = setup_logging(config, ticker="X:BTCUSD", log_dir=tmp_path / "logs")

    assert logger.name == "polychart"
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    assert list((tmp_path / "logs").glob("polychart_X-BTCUSD_*.log"))
    assert logging.getLogger("websockets").level == logging.WARNING


def test_setup_logging_console_only_without_log_dir(tmp_path, monkeypatch, reset_logger):
    monkeypatch.chdir(tmp_path)
    config = Config()
    config.LOG_DIR = None
    logger = setup_logging(config)

    assert [type(h) for h in logger.handlers] == [logging.StreamHandler]
    assert not list(tmp_path.iterdir())


def test_setup_logging_is_idempotent(tmp_path, reset_logger):
    config = Config()
    setup_logging(config, log_dir=tmp_path)
    logger = setup_logging(config, log_dir=tmp_path)
    assert len(logger.handlers) == 2


def test_log_file_path_without_ticker(tmp_path):
    path = log_file_path(tmp_path)
    assert path.parent == tmp_path
    assert path.name.startswith("polychart_")
    assert path.suffix == ".log"
