import json
import logging

from tvreceiver.logging import setup_logging


def test_setup_logging_json_format(capsys):
    logger = setup_logging(level="INFO", fmt="json")
    logger.info("hello", extra={"generation": 4})
    err = capsys.readouterr().err.strip().splitlines()[-1]
    data = json.loads(err)
    assert data["msg"] == "hello"
    assert data["level"] == "INFO"
    assert data["generation"] == 4


def test_setup_logging_text_level(capsys):
    logger = setup_logging(level="DEBUG", fmt="text", name="tvreceiver.test")
    logger.debug("hi")
    captured = capsys.readouterr().err
    assert "hi" in captured
    assert logger.name == "tvreceiver.test"


def test_tokens_are_masked(capsys):
    logger = setup_logging(level="INFO", fmt="text")
    logger.info("connecting to %s", "wss://host/ws?token=secret123&x=1")
    captured = capsys.readouterr().err
    assert "secret123" not in captured
    assert "token=***" in captured


def test_noisy_loggers_quieted():
    setup_logging(level="DEBUG")
    assert logging.getLogger("aiortc").level == logging.WARNING
    assert logging.getLogger("asyncio").level == logging.ERROR
