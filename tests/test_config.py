import pytest

from nginx_exporter.config import (
    ConfigError,
    ExporterConfig,
    load_config,
    parse_bool,
    parse_duration,
    parse_uint,
)


def test_defaults():
    cfg = load_config([], environ={})

    assert cfg == ExporterConfig()
    assert cfg.listen_address == ":9113"
    assert cfg.metrics_path == "/metrics"
    assert cfg.scrape_uri == "http://127.0.0.1:8080/stub_status"
    assert cfg.nginx_plus is False
    assert cfg.ssl_verify is True
    assert cfg.timeout == 5.0
    assert cfg.nginx_retries == 0
    assert cfg.nginx_retry_interval == 5.0
    assert cfg.const_labels == {}


def test_environment_overrides_defaults():
    cfg = load_config([], environ={
        "SCRAPE_URI": "http://nginx:8080/basic_status",
        "NGINX_PLUS": "true",
        "SSL_VERIFY": "false",
        "TIMEOUT": "2s",
        "NGINX_RETRIES": "3",
        "NGINX_RETRY_INTERVAL": "500ms",
        "CONST_LABELS": "job=web,dc=eu",
    })

    assert cfg.scrape_uri == "http://nginx:8080/basic_status"
    assert cfg.nginx_plus is True
    assert cfg.ssl_verify is False
    assert cfg.timeout == 2.0
    assert cfg.nginx_retries == 3
    assert cfg.nginx_retry_interval == 0.5
    assert cfg.const_labels == {"job": "web", "dc": "eu"}


def test_flags_override_environment():
    cfg = load_config(
        ["--nginx.scrape-uri", "http://flag/stub_status", "--nginx.plus", "--nginx.ssl-verify=false",
         "--web.listen-address", "127.0.0.1:9999"],
        environ={"SCRAPE_URI": "http://env/stub_status", "NGINX_PLUS": "false", "LISTEN_ADDRESS": ":1"},
    )

    assert cfg.scrape_uri == "http://flag/stub_status"
    assert cfg.nginx_plus is True
    assert cfg.ssl_verify is False
    assert cfg.listen_address == "127.0.0.1:9999"


def test_yaml_file_is_lowest_precedence(tmp_path):
    path = tmp_path / "exporter.yml"
    path.write_text(
        "scrape_uri: http://file/stub_status\n"
        "timeout: 3\n"
        "metrics_path: /prom\n"
        "const_labels:\n"
        "  job: file\n"
        "  team: infra\n",
        encoding="utf-8",
    )

    cfg = load_config(
        ["--config", str(path), "--prometheus.const-label", "job=flag"],
        environ={"SCRAPE_URI": "http://env/stub_status"},
    )

    assert cfg.scrape_uri == "http://env/stub_status"
    assert cfg.timeout == 3.0
    assert cfg.metrics_path == "/prom"
    assert cfg.const_labels == {"job": "flag", "team": "infra"}


def test_config_file_from_environment(tmp_path):
    path = tmp_path / "exporter.yml"
    path.write_text("nginx_retries: 2\n", encoding="utf-8")

    cfg = load_config([], environ={"CONFIG_FILE": str(path)})

    assert cfg.nginx_retries == 2


def test_unknown_config_file_key(tmp_path):
    path = tmp_path / "exporter.yml"
    path.write_text("scrape_url: http://typo\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="scrape_url"):
        load_config(["--config", str(path)], environ={})


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(["--config", str(tmp_path / "nope.yml")], environ={})


def test_invalid_environment_value_names_variable():
    with pytest.raises(ConfigError, match="NGINX_RETRIES"):
        load_config([], environ={"NGINX_RETRIES": "-1"})


def test_repeated_const_label_flags():
    cfg = load_config(
        ["--prometheus.const-label", "a=1", "--prometheus.const-label", "b=2"],
        environ={"CONST_LABELS": "a=0,c=3"},
    )

    assert cfg.const_labels == {"a": "1", "b": "2", "c": "3"}


@pytest.mark.parametrize(
    "value,seconds",
    [("5", 5.0), ("2.5", 2.5), ("500ms", 0.5), ("5s", 5.0), ("1m", 60.0), ("1m30s", 90.0), ("1h", 3600.0), (3, 3.0)],
)
def test_parse_duration(value, seconds):
    assert parse_duration(value) == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["-5s", "-1", "", "5x", "s", "nan", "inf", True])
def test_parse_duration_rejects(value):
    with pytest.raises(ConfigError):
        parse_duration(value)


@pytest.mark.parametrize("value,expected", [("1", True), ("TRUE", True), ("on", True), ("0", False), ("False", False), ("no", False)])
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected


def test_parse_bool_rejects():
    with pytest.raises(ConfigError):
        parse_bool("maybe")


def test_parse_uint():
    assert parse_uint("0") == 0
    assert parse_uint(7) == 7
    with pytest.raises(ConfigError):
        parse_uint("x")


def test_log_level():
    assert load_config(["--log.level", "DEBUG"], environ={}).log_level == "debug"
    with pytest.raises(ConfigError):
        load_config(["--log.level", "loud"], environ={})
