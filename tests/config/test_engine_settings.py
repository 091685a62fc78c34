from pathlib import Path

import pytest
import yaml

from workflow_config.settings import EngineSettings, load_settings


def test_defaults_without_file_or_env():
    settings = load_settings(env={})
    assert settings == EngineSettings()
    assert settings.database_url == "sqlite:///:memory:"
    assert settings.action_timeout_seconds is None
    assert settings.instance_query_limit == 50


def test_yaml_file(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump({
        "database_url": "sqlite:///wf.db",
        "action_timeout_seconds": 30,
        "log_level": "debug",
        "definitions_dir": "./workflows",
    }))

    settings = load_settings(path, env={})

    assert settings.database_url == "sqlite:///wf.db"
    assert settings.action_timeout_seconds == 30.0
    assert settings.log_level == "DEBUG"
    assert settings.definitions_dir == Path("./workflows")


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("action_timeout_seconds: 30\ninstance_query_limit: 10\n")

    settings = load_settings(
        path,
        env={
            "WORKFLOW_ACTION_TIMEOUT_SECONDS": "none",
            "WORKFLOW_INSTANCE_QUERY_LIMIT": "200",
            "UNRELATED": "x",
        },
    )

    assert settings.action_timeout_seconds is None
    assert settings.instance_query_limit == 200


def test_empty_file_means_defaults(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("")
    assert load_settings(path, env={}) == EngineSettings()


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("workers: 4\n")
    with pytest.raises(ValueError, match="workers"):
        load_settings(path, env={})


@pytest.mark.parametrize(
    "env",
    [
        {"WORKFLOW_ACTION_TIMEOUT_SECONDS": "0"},
        {"WORKFLOW_INSTANCE_QUERY_LIMIT": "-1"},
        {"WORKFLOW_INSTANCE_QUERY_LIMIT": "many"},
    ],
)
def test_out_of_range_values_rejected(env):
    with pytest.raises(ValueError):
        load_settings(env=env)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.yaml", env={})
