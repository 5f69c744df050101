"""
Unit tests for settings.
"""
import pydantic
import pytest

from storefront.config import OtelMode, Settings


def make_settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    """Defaults, validation and derived values."""

    @pytest.mark.unit
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TELEMETRY_ENABLED", raising=False)
        settings = make_settings()

        assert settings.api_port == 3000
        assert settings.order_cache_ttl == 120
        assert settings.payment_failure_rate == 0.1
        assert settings.otel_mode is OtelMode.DIRECT
        assert settings.otel_collector_endpoint == "http://localhost:4318"
        assert settings.telemetry_enabled is True

    @pytest.mark.unit
    def test_otel_mode_is_case_insensitive(self) -> None:
        assert make_settings(otel_mode="COLLECTOR").otel_mode is OtelMode.COLLECTOR

    @pytest.mark.unit
    def test_otel_mode_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTEL_MODE", "collector")

        assert make_settings().otel_mode is OtelMode.COLLECTOR

    @pytest.mark.unit
    def test_invalid_otel_mode(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            make_settings(otel_mode="sideways")

    @pytest.mark.unit
    def test_log_level_normalized(self) -> None:
        assert make_settings(log_level="debug").log_level == "DEBUG"

    @pytest.mark.unit
    def test_invalid_log_level(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="Invalid log level"):
            make_settings(log_level="chatty")

    @pytest.mark.unit
    @pytest.mark.parametrize("rate", [-0.1, 1.5])
    def test_failure_rate_is_a_probability(self, rate: float) -> None:
        with pytest.raises(pydantic.ValidationError):
            make_settings(payment_failure_rate=rate)

    @pytest.mark.unit
    def test_latency_window(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="latency window"):
            make_settings(payment_min_latency_ms=500, payment_max_latency_ms=100)

    @pytest.mark.unit
    def test_allowed_origins_list(self) -> None:
        settings = make_settings(allowed_origins="http://a.test, http://b.test,")

        assert settings.get_allowed_origins_list() == ["http://a.test", "http://b.test"]

    @pytest.mark.unit
    def test_stack_traces_hidden_in_production(self) -> None:
        assert make_settings(app_env="development").expose_stack_traces is True
        production = make_settings(app_env="production")
        assert production.is_production is True
        assert production.expose_stack_traces is False
