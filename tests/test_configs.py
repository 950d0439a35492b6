import logging

from civichub.configs import (
    _resolve_placeholders,
    configs,
    configure_logging,
    get_ancestor_dir,
    load_file,
)


def test_packaged_configs_are_loaded():
    assert configs["hierarchy"]["default_national_level"]["code"] == "NATIONAL"
    assert configs["hierarchy"]["code_pattern"] == "^[A-Z0-9_-]+$"
    assert configs["database"]["transactions"] is True


def test_placeholders_resolve_against_top_level_keys():
    data = {"name": "civichub", "db": {"uri": "mongodb://localhost/${name}"}}
    assert _resolve_placeholders(data, data)["db"]["uri"] == "mongodb://localhost/civichub"


def test_ancestor_dir(tmp_path):
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert get_ancestor_dir(nested, 2) == tmp_path.resolve()


def test_configure_logging_accepts_level_names(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("debug")

    assert calls[0]["level"] == "DEBUG"
    assert "%(name)s" in calls[0]["format"]


def test_yaml_files_load_under_sanitized_names(tmp_path):
    (tmp_path / "app-settings.yaml").write_text("database:\n  name: civic\n")

    data, name = load_file("app-settings.yaml", tmp_path)

    assert name == "app_settings"
    assert data == {"database": {"name": "civic"}}


def test_only_yaml_config_files_are_read(tmp_path):
    (tmp_path / "settings.json").write_text('{"database": {"name": "civic"}}')

    data, _ = load_file("settings.json", tmp_path)

    assert data is None
