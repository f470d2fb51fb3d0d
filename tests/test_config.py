import pytest

from tickbridge.config import DEFAULT_RPC_URL, load_settings

ENV_VARS = (
    "TICKBRIDGE_RPC_URL", "QUBIC_RPC_URL", "TICKBRIDGE_PAGE_SIZE", "TICKBRIDGE_HTTP2",
    "TICKBRIDGE_TIMEOUT_S", "TICKBRIDGE_FALLBACK_EPOCH", "TICKBRIDGE_LOG_LEVEL", "TICKBRIDGE_SAFETY_BUFFER",
    "TICKBRIDGE_MAX_CONNECTIONS", "TICKBRIDGE_RATE_LIMIT_RETRIES", "TICKBRIDGE_LATEST_FALLBACK_CANDIDATES",
    "TICKBRIDGE_ADJACENT_PAGE_WALK", "TICKBRIDGE_BINARY_SEARCH_PROBES", "TICKBRIDGE_BINARY_SEARCH_HIGH_PAGE",
    "TICKBRIDGE_ADJACENT_EPOCHS", "TICKBRIDGE_FORWARD_EPOCH_PROBE", "TICKBRIDGE_TIMESTAMP_EPOCH_LOOKBACK",
    "TICKBRIDGE_MAX_EMPTY_PAGES", "TICKBRIDGE_PROBE_PAGE_LIMIT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    s = load_settings(dotenv=False)
    assert s.rpc_url == DEFAULT_RPC_URL
    assert s.page_size == 500
    assert s.safety_buffer == 10
    assert s.snapshot_ttl_s == 30.0
    assert s.fallback_epoch is None


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("QUBIC_RPC_URL", "https://alias.test")
    monkeypatch.setenv("TICKBRIDGE_PAGE_SIZE", "100")
    monkeypatch.setenv("TICKBRIDGE_HTTP2", "off")
    monkeypatch.setenv("TICKBRIDGE_TIMEOUT_S", "2.5")
    monkeypatch.setenv("TICKBRIDGE_FALLBACK_EPOCH", "160")
    monkeypatch.setenv("TICKBRIDGE_LOG_LEVEL", "debug")
    s = load_settings(dotenv=False)
    assert s.rpc_url == "https://alias.test"
    assert (s.page_size, s.http2, s.timeout_s, s.fallback_epoch, s.log_level) == (100, False, 2.5, 160, "DEBUG")


def test_primary_url_wins_over_alias(monkeypatch):
    monkeypatch.setenv("QUBIC_RPC_URL", "https://alias.test")
    monkeypatch.setenv("TICKBRIDGE_RPC_URL", "https://primary.test")
    assert load_settings(dotenv=False).rpc_url == "https://primary.test"


@pytest.mark.parametrize("name,value", [
    ("TICKBRIDGE_PAGE_SIZE", "many"),
    ("TICKBRIDGE_HTTP2", "maybe"),
    ("TICKBRIDGE_TIMEOUT_S", "soon"),
])
def test_bad_values_name_the_variable(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        load_settings(dotenv=False)


def test_search_tunables_come_from_env(monkeypatch):
    monkeypatch.setenv("TICKBRIDGE_LATEST_FALLBACK_CANDIDATES", "8")
    monkeypatch.setenv("TICKBRIDGE_ADJACENT_PAGE_WALK", "2")
    monkeypatch.setenv("TICKBRIDGE_BINARY_SEARCH_PROBES", "12")
    monkeypatch.setenv("TICKBRIDGE_BINARY_SEARCH_HIGH_PAGE", "4000")
    monkeypatch.setenv("TICKBRIDGE_ADJACENT_EPOCHS", "0")
    monkeypatch.setenv("TICKBRIDGE_FORWARD_EPOCH_PROBE", "3")
    monkeypatch.setenv("TICKBRIDGE_TIMESTAMP_EPOCH_LOOKBACK", "7")
    monkeypatch.setenv("TICKBRIDGE_MAX_EMPTY_PAGES", "5")
    monkeypatch.setenv("TICKBRIDGE_PROBE_PAGE_LIMIT", "4")
    s = load_settings(dotenv=False)
    assert (s.latest_fallback_candidates, s.adjacent_page_walk, s.binary_search_probes) == (8, 2, 12)
    assert (s.binary_search_high_page, s.adjacent_epochs, s.forward_epoch_probe) == (4000, 0, 3)
    assert (s.timestamp_epoch_lookback, s.max_empty_pages, s.probe_page_limit) == (7, 5, 4)


@pytest.mark.parametrize("name,value", [
    ("TICKBRIDGE_PAGE_SIZE", "0"),
    ("TICKBRIDGE_PAGE_SIZE", "-10"),
    ("TICKBRIDGE_MAX_CONNECTIONS", "0"),
    ("TICKBRIDGE_MAX_EMPTY_PAGES", "0"),
    ("TICKBRIDGE_SAFETY_BUFFER", "-1"),
    ("TICKBRIDGE_LATEST_FALLBACK_CANDIDATES", "-1"),
])
def test_out_of_range_sizes_name_the_variable(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        load_settings(dotenv=False)


def test_zero_is_allowed_where_it_means_none(monkeypatch):
    monkeypatch.setenv("TICKBRIDGE_SAFETY_BUFFER", "0")
    monkeypatch.setenv("TICKBRIDGE_RATE_LIMIT_RETRIES", "0")
    s = load_settings(dotenv=False)
    assert (s.safety_buffer, s.rate_limit_retries) == (0, 0)


def test_dotenv_file_is_read(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("TICKBRIDGE_SAFETY_BUFFER=25\n")
    monkeypatch.chdir(tmp_path)
    # load_dotenv writes os.environ directly; register the var so teardown removes it
    monkeypatch.setenv("TICKBRIDGE_SAFETY_BUFFER", "0")
    monkeypatch.delenv("TICKBRIDGE_SAFETY_BUFFER")
    assert load_settings().safety_buffer == 25
