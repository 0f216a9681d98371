import pytest

from versionstore.cli import main, parse_args


def test_default_data_path():
    assert parse_args([]).data_path == "./ss_data"


def test_short_option():
    assert parse_args(["-d", "/srv/data"]).data_path == "/srv/data"


def test_long_option():
    assert parse_args(["--data-path", "elsewhere"]).data_path == "elsewhere"


def test_unknown_option_exits():
    with pytest.raises(SystemExit):
        parse_args(["--bogus"])


def test_main_reports_unusable_data_path(tmp_path, capsys):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    assert main(["--data-path", str(blocker)]) == 1
    captured = capsys.readouterr()
    assert str(blocker) in captured.out
    assert captured.err.startswith("error:")