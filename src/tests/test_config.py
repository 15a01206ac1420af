import pytest

from matchmaker.core.config import load_config, parse_config

BASE = {
    "run": {"run_id": "auto", "seed": 1},
    "storage": {"duckdb_path": "x.duckdb"},
    "logging": {"level": "debug"},
}


def test_defaults_fill_optional_sections():
    cfg = parse_config(dict(BASE))
    assert cfg.matchmaking.min_score == 0.3
    assert cfg.matchmaking.session_interests == "intersection"
    assert cfg.matchmaking.retain_expired_s == 600.0
    assert cfg.storage.clean_slate is False
    assert cfg.storage.flush.every_n_events == 5000
    assert cfg.logging.level == "DEBUG"
    assert cfg.simulation.interests_per_participant == 2


@pytest.mark.parametrize("section", ["run", "storage", "logging"])
def test_missing_required_section(section):
    data = dict(BASE)
    del data[section]
    with pytest.raises(ValueError):
        parse_config(data)


@pytest.mark.parametrize(
    "mm",
    [
        {"min_score": 1.5},
        {"min_score": 1.0},
        {"min_score": -0.1},
        {"session_interests": "xor"},
        {"stale_after_s": 0},
        {"max_interests": 0},
        {"retain_expired_s": -1},
    ],
)
def test_invalid_matchmaking_values(mm):
    with pytest.raises(ValueError):
        parse_config({**BASE, "matchmaking": mm})


def test_load_config_from_yaml(tmp_path):
    p = tmp_path / "mm.yaml"
    p.write_text(
        "run: {seed: 9}\n"
        "matchmaking: {min_score: 0.1, session_interests: Union}\n"
        "storage: {duckdb_path: db.duckdb, flush: {every_n_events: 10}}\n"
        "logging: {}\n"
        "simulation: {interest_pool: [a, b, c]}\n"
    )
    cfg = load_config(p)
    assert cfg.run.seed == 9
    assert cfg.matchmaking.min_score == 0.1
    assert cfg.matchmaking.session_interests == "union"
    assert cfg.storage.flush.every_n_events == 10
    assert cfg.simulation.interest_pool == ("a", "b", "c")


def test_non_mapping_yaml_rejected(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(p)
