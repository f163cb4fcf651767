from docingest.cli import build_parser, main


def test_extract_prints_normalized_text(tmp_path, capsys):
    path = tmp_path / "notes.txt"
    path.write_text("one\r\n\r\n\r\ntwo")

    assert main(["extract", str(path)]) == 0
    assert capsys.readouterr().out.strip() == "one\n\ntwo"


def test_extract_reports_failure(tmp_path, capsys):
    path = tmp_path / "data.xyz"
    path.write_text("?")

    assert main(["extract", str(path)]) == 1
    assert "unsupported_format: " in capsys.readouterr().err


def test_monitor_interval_argument():
    args = build_parser().parse_args(["monitor", "--interval", "5"])

    assert args.command == "monitor"
    assert args.interval == 5.0
