import pytest

from coach.config import ConfigError, ConfigLoader

def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    config = ConfigLoader(str(tmp_path / "absent.toml")).get_config()

    assert config.journal.backend == "memory"
    assert config.planner.max_tool_rounds == 5
    assert config.stream.padding_bytes == 2048
    assert config.rate_limit.enabled is True
    assert config.rate_limit.turns_per_window == 20
    assert config.provider._api_key is None

def test_toml_values_and_secret(tmp_path, monkeypatch):
    monkeypatch.setenv("COACH_TEST_KEY", "sk-live")
    path = tmp_path / "config.toml"
    path.write_text(
        '[planner]\nmodel = "gpt-test"\nmax_tool_rounds = 3\n\n'
        '[provider]\napi_key_env_var = "COACH_TEST_KEY"\n\n'
        '[journal]\nbackend = "redis"\n'
    )

    config = ConfigLoader(str(path)).get_config()

    assert config.planner.model == "gpt-test"
    assert config.planner.max_tool_rounds == 3
    assert config.provider._api_key == "sk-live"
    # redis backend without a [journal.redis] section gets the default connection
    assert config.journal.redis is not None
    assert config.journal.redis.url.startswith("redis://")

def test_invalid_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[planner\nmodel = ")
    with pytest.raises(ConfigError):
        ConfigLoader(str(path))

def test_invalid_values(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[planner]\nmax_tool_rounds = 0\n")
    with pytest.raises(ConfigError):
        ConfigLoader(str(path))
