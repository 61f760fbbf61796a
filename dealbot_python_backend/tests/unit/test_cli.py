from unittest.mock import AsyncMock

import pytest

from dealbot_python_backend import cli


def test_build_parser_defaults():
    args = cli.build_parser().parse_args([])

    assert args.prefix is None
    assert args.backend is None
    assert args.batch_size is None
    assert args.create_tables is False


def test_build_parser_options():
    args = cli.build_parser().parse_args(
        ["--prefix", "logs/2024/", "--backend", "local", "--batch-size", "50", "--create-tables"]
    )

    assert args.prefix == "logs/2024/"
    assert args.backend == "local"
    assert args.batch_size == 50
    assert args.create_tables is True


def test_build_parser_rejects_unknown_backend():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--backend", "s3"])


@pytest.mark.parametrize("success, exit_code", [(True, 0), (False, 1)])
def test_main_exit_code_follows_run_result(monkeypatch, success, exit_code):
    monkeypatch.setattr(cli, "run", AsyncMock(return_value=success))

    assert cli.main(["--prefix", "logs/"]) == exit_code


def test_main_returns_1_on_unexpected_error(monkeypatch):
    monkeypatch.setattr(cli, "run", AsyncMock(side_effect=RuntimeError("no database")))

    assert cli.main([]) == 1
