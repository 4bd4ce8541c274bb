import pytest

from website_mirror import cli
from website_mirror.errors import ConfigurationError
from website_mirror.kinds import ResourceKind
from website_mirror.settings import DEFAULT_USER_AGENT, load_config_file


def test_defaults(tmp_path):
    args = cli.parse_args(["https://example.com/", "-o", str(tmp_path / "out")])
    settings = cli.settings_from_args(args)
    assert settings.max_depth == 3
    assert settings.max_concurrent == 10
    assert settings.user_agent == DEFAULT_USER_AGENT
    assert settings.only_resources is None
    assert settings.follow_redirects
    assert not settings.ignore_robots
    assert settings.output_dir == tmp_path / "out"


def test_short_flags(tmp_path):
    args = cli.parse_args(
        ["https://example.com/", "-o", str(tmp_path), "-d", "1", "-c", "4", "-r", "-e"]
    )
    settings = cli.settings_from_args(args)
    assert settings.max_depth == 1
    assert settings.max_concurrent == 4
    assert settings.ignore_robots
    assert settings.download_external


def test_only_resources_and_webp(tmp_path):
    args = cli.parse_args(
        [
            "https://example.com/",
            "-o",
            str(tmp_path),
            "--only-resources",
            "images,css",
            "--convert-to-webp",
        ]
    )
    settings = cli.settings_from_args(args)
    assert settings.only_resources == {ResourceKind.IMAGE, ResourceKind.CSS}
    assert settings.convert_to_webp


def test_full_mirror(tmp_path):
    args = cli.parse_args(["https://example.com/", "-o", str(tmp_path), "--full-mirror"])
    settings = cli.settings_from_args(args)
    assert settings.max_depth is None
    assert settings.max_concurrent == 100
    assert settings.ignore_robots
    assert settings.download_external


def test_toml_config_sets_defaults(tmp_path):
    cfg = tmp_path / "mirror.toml"
    cfg.write_text(
        '[crawl]\nmax_depth = 1\nonly_resources = ["images", "css"]\n'
        '[http]\nuser_agent = "Custom/1.0"\ntimeout = 5.0\n',
        encoding="utf-8",
    )
    args = cli.parse_args(["--config", str(cfg), "https://example.com/"])
    settings = cli.settings_from_args(args)
    assert settings.max_depth == 1
    assert settings.only_resources == {ResourceKind.IMAGE, ResourceKind.CSS}
    assert settings.user_agent == "Custom/1.0"
    assert settings.timeout == 5.0


def test_command_line_beats_config(tmp_path):
    cfg = tmp_path / "mirror.yaml"
    cfg.write_text("crawl:\n  max_depth: 1\n", encoding="utf-8")
    args = cli.parse_args(["--config", str(cfg), "https://example.com/", "-d", "4"])
    assert args.max_depth == 4


def test_bad_config_file(tmp_path):
    cfg = tmp_path / "mirror.yaml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_file(str(cfg))
    with pytest.raises(ConfigurationError):
        load_config_file(str(tmp_path / "missing.toml"))
    with pytest.raises(ConfigurationError):
        load_config_file(str(tmp_path / "mirror.ini"))


def test_invalid_url_exits_with_one(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["ftp://example.com/", "-o", str(tmp_path)])
    assert exc.value.code == 1
    assert "invalid seed URL" in capsys.readouterr().err


def test_unknown_resource_type_exits_with_one(tmp_path):
    with pytest.raises(SystemExit) as exc:
        cli.main(["https://example.com/", "-o", str(tmp_path), "--only-resources", "gifs"])
    assert exc.value.code == 1


def test_interrupt_exits_with_130(tmp_path, monkeypatch):
    class Interrupted:
        def __init__(self, settings):
            pass

        def run(self):
            raise KeyboardInterrupt

    monkeypatch.setattr(cli, "Scheduler", Interrupted)
    with pytest.raises(SystemExit) as exc:
        cli.main(["https://example.com/", "-o", str(tmp_path)])
    assert exc.value.code == 130


def test_max_bytes_below_minimum_is_rejected(tmp_path):
    args = cli.parse_args(
        ["https://example.com/", "-o", str(tmp_path), "--max-bytes", "100"]
    )
    with pytest.raises(ConfigurationError):
        cli.settings_from_args(args)
