import pathlib

import pytest

from common.settings import DEFAULT_BASE_URL, load_settings

ROOT = pathlib.Path(__file__).resolve().parents[1]


def test_config_file_exists_and_has_placeholders():
    cfg = ROOT / "config.yaml"
    assert cfg.exists(), "config.yaml missing at project root"
    text = cfg.read_text(encoding="utf-8")

    forbidden = ["http://", "https://", "AKIA", "AIza", "secret:", "token:", "key:"]

    def safe(line: str) -> bool:
        if "${" in line:
            return True
        return not any(bad in line for bad in forbidden)

    assert all(safe(line) for line in text.splitlines()), "config.yaml contains potential secrets or live URLs"


def test_load_project_config(monkeypatch):
    monkeypatch.delenv("SUBSCAN_API_KEY", raising=False)
    st = load_settings(str(ROOT / "config.yaml"))
    assert st.explorer.network == "alephzero"
    assert st.explorer.base_url == DEFAULT_BASE_URL
    assert st.explorer.api_key is None
    assert st.pipeline.ss58_format == 42
    assert st.pipeline.concurrency is None
    assert (st.pipeline.primary_token, st.pipeline.secondary_token) == ("azero", "usdt")


def test_env_api_key_override(tmp_path, monkeypatch):
    cfg = tmp_path / "c.yaml"
    cfg.write_text("pipeline:\n  rows: 5\n")
    monkeypatch.setenv("SUBSCAN_API_KEY", "from-env")
    st = load_settings(str(cfg))
    assert st.explorer.api_key == "from-env"
    assert st.pipeline.rows == 5


@pytest.mark.parametrize("body", [
    "explorer:\n  base_url: http://plain.example\n",
    "pipeline:\n  concurrency: 0\n",
    "explorer:\n  max_attempts: 0\n",
])
def test_invalid_config_raises(tmp_path, monkeypatch, body):
    monkeypatch.delenv("SUBSCAN_API_KEY", raising=False)
    cfg = tmp_path / "bad.yaml"
    cfg.write_text(body)
    with pytest.raises(RuntimeError):
        load_settings(str(cfg))


def test_placeholder_base_url_falls_back(tmp_path):
    cfg = tmp_path / "p.yaml"
    cfg.write_text("explorer:\n  base_url: ${SUBSCAN_URL}\n")
    assert load_settings(str(cfg)).explorer.base_url == DEFAULT_BASE_URL
