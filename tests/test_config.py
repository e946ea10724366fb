from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from llmsheetbot import config as config_module
from llmsheetbot.config import DEFAULT_CONFIG, ENV_CONFIG_PATH, deep_merge, load_config
from llmsheetbot.errors import ConfigError


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "config" / "config.yaml"
    monkeypatch.setattr(config_module, "CONFIG_PATH", path)
    monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)
    return path


def test_load_config_creates_default_file(config_path: Path, tmp_path: Path) -> None:
    data = load_config(base_dir=tmp_path)

    assert config_path.exists()
    assert yaml.safe_load(config_path.read_text(encoding="utf-8"))["retry"]["ceiling"] == 10
    assert data["scheduler"]["batch_size"] == DEFAULT_CONFIG["scheduler"]["batch_size"]
    assert data["paths"]["logs"] == str((tmp_path / "logs").resolve())
    assert (tmp_path / "data" / "summaries").is_dir()


def test_load_config_layers_files_env_and_overrides(config_path: Path, tmp_path: Path, monkeypatch) -> None:
    config_path.parent.mkdir(parents=True)
    config_path.write_text("scheduler:\n  poll_interval: 1\n  batch_size: 2\n", encoding="utf-8")
    env_file = tmp_path / "env.yaml"
    env_file.write_text("scheduler:\n  batch_size: 4\nexclusive:\n  strategy: polite\n", encoding="utf-8")
    explicit = tmp_path / "explicit.yaml"
    explicit.write_text("retry:\n  ceiling: 5\n", encoding="utf-8")
    monkeypatch.setenv(ENV_CONFIG_PATH, str(env_file))

    result = load_config(
        explicit,
        overrides={"exclusive": {"strategy": "aggressive"}},
        include_sources=True,
        base_dir=tmp_path,
    )

    config = result.config
    assert config["scheduler"]["poll_interval"] == 1
    assert config["scheduler"]["batch_size"] == 4
    assert config["scheduler"]["max_iterations"] == 50
    assert config["retry"]["ceiling"] == 5
    assert config["exclusive"]["strategy"] == "aggressive"
    assert result.sources[-1] == "<command line>"
    assert len(result.sources) == 4


def test_load_config_resolves_csv_path_against_base_dir(config_path: Path, tmp_path: Path) -> None:
    data = load_config(overrides={"store": {"csv_path": "sheets/main.csv"}}, base_dir=tmp_path)

    assert data["store"]["csv_path"] == str((tmp_path / "sheets" / "main.csv").resolve())


def test_load_config_requires_explicit_file_to_exist(config_path: Path, tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml", base_dir=tmp_path)


def test_load_config_rejects_invalid_yaml(config_path: Path, tmp_path: Path) -> None:
    broken = tmp_path / "broken.yaml"
    broken.write_text("retry: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="not valid YAML"):
        load_config(broken, base_dir=tmp_path)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"store": {"backend": "excel"}}, "store.backend"),
        ({"exclusive": {"strategy": "greedy"}}, "exclusive.strategy"),
        ({"retry": {"ceiling": 0}}, "retry.ceiling"),
        ({"retry": {"delays": []}}, "retry.delays"),
        ({"scheduler": {"batch_size": 0}}, "scheduler.batch_size"),
        ({"testing": {"max_tasks": 0}}, "testing.max_tasks"),
    ],
)
def test_load_config_validates_values(config_path: Path, tmp_path: Path, overrides, message) -> None:
    with pytest.raises(ConfigError, match=message):
        load_config(overrides=overrides, base_dir=tmp_path)


def test_deep_merge_keeps_sibling_keys() -> None:
    merged = deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 5}})

    assert merged == {"a": {"b": 5, "c": 2}, "d": 3}
