"""
Tests for the Signal Stream FastAPI application.
"""
import json
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from services.signal_stream.config import SignalStreamSettings, get_settings
from services.signal_stream.main import BANNER, create_app
from tests.signal_fixtures import FakeDataFetcher, make_bars


@pytest.fixture
def settings():
    # Long interval so only manually triggered ticks run
    return SignalStreamSettings(poll_interval_seconds=3600, enable_metrics=True, redis_enabled=False)


@pytest.fixture
def app(settings):
    fetcher = FakeDataFetcher({('AAPL', None): make_bars([100.0, 101.0, 106.0])})
    return create_app(settings, fetcher=fetcher)


def subscribe(ws, symbol, strategy, event="subscribe"):
    ws.send_json({"event": event, "symbol": symbol, "strategy": strategy})
    # Messages are handled in order, so the error reply confirms the request was processed
    ws.send_text("sync")
    reply = ws.receive_json()
    assert reply["event"] == "error"


class TestHttpEndpoints:
    """Test plain HTTP routes."""

    def test_root_banner(self, app):
        with TestClient(app) as client:
            response = client.get("/")
        assert response.status_code == 200
        assert response.text == BANNER

    def test_health(self, app):
        with TestClient(app) as client:
            response = client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["service"] == "signal_stream"
        assert body["scheduler_running"] is True
        assert body["clients"] == 0
        assert body["timestamp"].endswith("+00:00")

    def test_metrics(self, app):
        with TestClient(app) as client:
            response = client.get("/metrics")
        assert response.status_code == 200
        assert "signal_ticks_total" in response.text

    def test_metrics_disabled(self):
        app = create_app(
            SignalStreamSettings(poll_interval_seconds=3600, enable_metrics=False),
            fetcher=FakeDataFetcher()
        )
        with TestClient(app) as client:
            assert client.get("/metrics").status_code == 404

    def test_cors_allows_any_origin(self, app):
        with TestClient(app) as client:
            response = client.get("/", headers={"Origin": "http://example.com"})
        assert response.headers["access-control-allow-origin"] == "*"

    def test_scheduler_stops_on_shutdown(self, app):
        with TestClient(app):
            assert app.state.scheduler.running
        assert not app.state.scheduler.running


class TestLatestSignalEndpoint:
    """Test reading cached signals from the Redis mirror."""

    @pytest.fixture
    def mock_redis(self):
        with patch('services.signal_stream.signal_publisher.redis.Redis') as mock:
            redis_instance = Mock()
            redis_instance.ping.return_value = True
            redis_instance.get.return_value = None
            mock.return_value = redis_instance
            yield redis_instance

    @pytest.fixture
    def redis_app(self, mock_redis):
        settings = SignalStreamSettings(poll_interval_seconds=3600, redis_enabled=True)
        return create_app(settings, fetcher=FakeDataFetcher())

    def test_returns_cached_signal(self, redis_app, mock_redis):
        mock_redis.get.return_value = json.dumps({"final": "Strong Buy"})

        with TestClient(redis_app) as client:
            response = client.get("/signals/AAPL/combined")

        assert response.status_code == 200
        assert response.json() == {
            "symbol": "AAPL", "strategy": "combined", "signal": {"final": "Strong Buy"}
        }
        mock_redis.get.assert_called_with("stock:latest_signal:AAPL:combined")

    def test_missing_signal(self, redis_app):
        with TestClient(redis_app) as client:
            response = client.get("/signals/AAPL/momentum")
        assert response.status_code == 404

    def test_cache_disabled(self, app):
        with TestClient(app) as client:
            response = client.get("/signals/AAPL/momentum")
        assert response.status_code == 404
        assert response.json()["detail"] == "Signal cache is disabled"


class TestWebSocketProtocol:
    """Test the subscribe / signal / disconnect protocol."""

    def test_subscribe_and_receive_signal(self, app):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                subscribe(ws, "AAPL", "momentum")

                stats = client.portal.call(app.state.scheduler.run_tick)

                assert stats["delivered"] == 1
                assert ws.receive_json() == {
                    "event": "signal",
                    "data": {"symbol": "AAPL", "strategy": "momentum", "signal": "Buy"}
                }

    def test_duplicate_subscribe_yields_one_subscription(self, app):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                subscribe(ws, "AAPL", "momentum")
                subscribe(ws, "AAPL", "momentum")
                assert len(app.state.registry) == 1

    def test_unsubscribe(self, app):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                subscribe(ws, "AAPL", "momentum")
                subscribe(ws, "AAPL", "momentum", event="unsubscribe")
                assert len(app.state.registry) == 0

    def test_invalid_message_gets_error(self, app):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"event": "subscribe", "symbol": "AAPL"})
                reply = ws.receive_json()
        assert reply["event"] == "error"
        assert reply["message"].startswith("Invalid message")

    def test_unknown_event_gets_error(self, app):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"event": "publish", "symbol": "AAPL", "strategy": "momentum"})
                assert ws.receive_json()["event"] == "error"

    def test_disconnect_removes_subscriptions(self, app):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                subscribe(ws, "AAPL", "momentum")
                assert app.state.registry.client_count == 1

            assert app.state.registry.client_count == 0
            assert len(app.state.registry) == 0
            assert app.state.websocket_publisher.connection_count == 0

            stats = client.portal.call(app.state.scheduler.run_tick)
            assert stats["total"] == 0


class TestSettings:
    """Test environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PORT", raising=False)
        monkeypatch.delenv("SIGNAL_STREAM_PORT", raising=False)
        settings = SignalStreamSettings(_env_file=None)
        assert settings.port == 4000
        assert settings.poll_interval_seconds == 60
        assert settings.cors_origins == ["*"]

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_STREAM_POLL_INTERVAL_SECONDS", "30")
        monkeypatch.setenv("SIGNAL_STREAM_REDIS_ENABLED", "true")
        settings = SignalStreamSettings(_env_file=None)
        assert settings.poll_interval_seconds == 30
        assert settings.redis_enabled is True

    def test_plain_port_variable(self, monkeypatch):
        monkeypatch.delenv("SIGNAL_STREAM_PORT", raising=False)
        monkeypatch.setenv("PORT", "5001")
        assert SignalStreamSettings(_env_file=None).port == 5001

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
