import yaml

from LunarNorm.core.backend.config import (
    load_config,
    load_yaml_config,
    merge_configs,
    parse_cli_args,
)


def write_config(path, data):
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return path


def test_yaml_config_is_loaded(tmp_path):
    path = write_config(tmp_path / "lunar_config.yaml", {"dtype": "float64", "momentum": 0.8})
    assert load_yaml_config(str(path)) == {"dtype": "float64", "momentum": 0.8}


def test_missing_yaml_config_yields_empty_dict(tmp_path, capsys):
    assert load_yaml_config(str(tmp_path / "missing.yaml")) == {}
    assert "No config found" in capsys.readouterr().out


def test_empty_yaml_config_yields_empty_dict(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_yaml_config(str(path)) == {}


def test_yaml_path_from_environment(tmp_path, monkeypatch):
    path = write_config(tmp_path / "env.yaml", {"seed": 3})
    monkeypatch.setenv("LUNARNORM_CONFIG", str(path))
    assert load_yaml_config() == {"seed": 3}


def test_cli_args_are_typed_and_unknown_args_ignored():
    cfg = parse_cli_args(["-q", "tests/", "--seed", "7", "--momentum", "0.5", "--epsilon", "1e-5", "--device", "cpu"])
    assert cfg == {"seed": 7, "momentum": 0.5, "epsilon": 1e-5, "device": "cpu"}


def test_cli_args_do_not_match_abbreviations():
    assert parse_cli_args(["--mom", "0.5"]) == {}


def test_merge_prefers_override():
    base = {"momentum": 0.9, "dtype": "float32"}
    merged = merge_configs(base, {"momentum": 0.5})
    assert merged == {"momentum": 0.5, "dtype": "float32"}
    assert base["momentum"] == 0.9


def test_load_config_merges_yaml_and_cli(tmp_path):
    path = write_config(tmp_path / "cfg.yaml", {"momentum": 0.8, "dtype": "float64"})
    cfg = load_config(["--config", str(path), "--momentum", "0.6"])
    assert cfg["momentum"] == 0.6
    assert cfg["dtype"] == "float64"
    assert cfg["config"] == str(path)
