import logging
import re

import pytest

from config.settings import Settings
from main            import build_parser, configure_logging


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.port == Settings.DEFAULT_PORT
    assert args.host == Settings.PROXY_HOST
    assert args.policy == Settings.POLICY_FILE
    assert args.log_file == Settings.LOG_FILE
    assert args.log_level == "INFO"


def test_parser_positional_port_and_options():
    args = build_parser().parse_args(
        ["8080", "--policy", "p.txt", "--log-level", "debug"]
    )
    assert args.port == 8080
    assert args.policy == "p.txt"
    assert args.log_level == "DEBUG"


def test_parser_rejects_bad_port():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["http"])


@pytest.fixture
def restore_root_logger():
    root   = logging.getLogger()
    before = list(root.handlers)
    level  = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_log_line_format(tmp_path, capsys, restore_root_logger):
    log_file = tmp_path / "proxy_http.log"
    log_file.write_text("previous line\n", encoding="utf-8")

    configure_logging(str(log_file), "INFO")
    logging.getLogger("FilterProxy.Test").info("Received request-line: x")
    for handler in logging.getLogger().handlers:
        handler.flush()

    pattern = re.compile(
        r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] Received request-line: x$"
    )
    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "previous line"
    assert pattern.match(lines[-1])
    assert pattern.match(capsys.readouterr().out.splitlines()[-1])
