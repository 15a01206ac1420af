from matchmaker.core.config import parse_config
from matchmaker.features.bootstrap.service import bootstrap_run


def _cfg(tmp_path, run_id: str):
    return parse_config(
        {
            "run": {"run_id": run_id, "seed": 123},
            "storage": {"duckdb_path": str(tmp_path / "mm.duckdb"), "clean_slate": True},
            "logging": {"level": "WARNING"},
            "simulation": {"duration_s": 300},
        }
    )


def test_run_id_auto_is_deterministic(tmp_path):
    cfg = _cfg(tmp_path, "auto")

    r1 = bootstrap_run(cfg)
    r2 = bootstrap_run(cfg)

    assert r1.ctx.run_id == r2.ctx.run_id
    assert r1.summary == r2.summary


def test_run_id_respects_explicit_value(tmp_path):
    r = bootstrap_run(_cfg(tmp_path, "my_run"))
    assert r.ctx.run_id == "my_run"
