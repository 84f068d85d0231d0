"""Tests for MeasurementProtocolClient."""

import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from ga4_relay.transport import DeliveryContext, MeasurementProtocolClient

MEASUREMENT_ID = "G-TEST123"

COOKIES = {
    "_ga": "GA1.1.1234567890.1699999999",
    "_ga_TEST123": "GS2.1.s1700000000$o3$g1$t1700000100",
}


@pytest.fixture
def client(http_client):
    return MeasurementProtocolClient(MEASUREMENT_ID, "mp-secret", http_client=http_client)


class TestBuildPayload:
    def test_identity_and_defaults(self, client):
        payload = client.build_payload(
            "purchase", {"value": 10.0}, DeliveryContext(cookies=COOKIES)
        )

        assert payload["client_id"] == "1234567890.1699999999"
        event = payload["events"][0]
        assert event["name"] == "purchase"
        assert event["params"]["engagement_time_msec"] == 100
        assert event["params"]["session_id"] == "1700000000"
        assert event["params"]["value"] == 10.0
        assert "user_id" not in payload

    def test_engagement_time_can_be_overridden(self, client):
        payload = client.build_payload("click", {"engagement_time_msec": 2500})
        assert payload["events"][0]["params"]["engagement_time_msec"] == 2500

    def test_user_id_is_namespaced(self, client):
        payload = client.build_payload("purchase", {}, DeliveryContext(user_id=7))
        assert payload["user_id"] == "user_7"

    def test_zero_user_id_omitted(self, client):
        payload = client.build_payload("purchase", {}, DeliveryContext(user_id=0))
        assert "user_id" not in payload

    def test_timestamp_from_order_creation(self, client):
        created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        payload = client.build_payload(
            "purchase",
            {},
            DeliveryContext(order_created_at=created, timestamp=1.0),
        )
        assert payload["timestamp_micros"] == str(int(created.timestamp()) * 1_000_000)

    def test_timestamp_from_context(self, client):
        payload = client.build_payload("purchase", {}, DeliveryContext(timestamp=1700000000))
        assert payload["timestamp_micros"] == "1700000000000000"

    def test_transforms_see_full_payload(self, client):
        def add_consent(payload, context):
            payload["consent"] = {"ad_user_data": "GRANTED"}
            return payload

        client.add_transform(add_consent)
        payload = client.build_payload("purchase", {})
        assert payload["consent"] == {"ad_user_data": "GRANTED"}

    def test_failing_transform_is_skipped(self, client, caplog):
        def broken(payload, context):
            raise RuntimeError("boom")

        client.add_transform(broken)
        with caplog.at_level(logging.ERROR, logger="ga4_relay.transport"):
            payload = client.build_payload("purchase", {})

        assert payload["events"][0]["name"] == "purchase"
        assert "transform" in caplog.text


class TestSend:
    def test_posts_to_collector(self, client, collector):
        result = client.send("purchase", {"value": 1.0}, DeliveryContext(cookies=COOKIES))

        assert result.success
        assert result.status_code == 204
        request = collector.requests[0]
        assert request.method == "POST"
        assert request.url.host == "www.google-analytics.com"
        assert request.url.path == "/mp/collect"
        assert request.url.params["measurement_id"] == MEASUREMENT_ID
        assert request.url.params["api_secret"] == "mp-secret"
        assert request.headers["content-type"] == "application/json"
        assert collector.payloads[0]["client_id"] == "1234567890.1699999999"

    def test_non_2xx_is_transport_failure(self, client, collector, caplog):
        collector.status_code = 400
        collector.text = '{"error": "bad"}'
        with caplog.at_level(logging.ERROR, logger="ga4_relay.transport"):
            result = client.send("purchase", {})

        assert not result.success
        assert result.error_type == "TransportError"
        assert result.status_code == 400
        assert result.body == '{"error": "bad"}'
        assert "HTTP 400" in caplog.text

    def test_network_error_is_transport_failure(self, client, collector):
        collector.error = httpx.ConnectError("connection refused")
        result = client.send("purchase", {})

        assert not result.success
        assert result.error_type == "TransportError"
        assert "connection refused" in result.error

    def test_missing_secret_is_configuration_error(self, http_client, collector):
        client = MeasurementProtocolClient(MEASUREMENT_ID, "", http_client=http_client)
        result = client.send("purchase", {})

        assert result.error_type == "ConfigurationError"
        assert collector.requests == []

    def test_empty_event_name(self, client, collector):
        result = client.send("", {})

        assert result.error_type == "ValidationError"
        assert collector.requests == []

    def test_payload_without_client_id(self, client, collector):
        result = client.send_payload({"events": [{"name": "x", "params": {}}]})

        assert result.error_type == "ValidationError"
        assert collector.requests == []

    def test_payload_without_events(self, client, collector):
        result = client.send_payload({"client_id": "1.2", "events": []})

        assert result.error_type == "ValidationError"
        assert collector.requests == []


class TestLifecycle:
    def test_invalid_measurement_id_logged(self, http_client, caplog):
        with caplog.at_level(logging.ERROR, logger="ga4_relay.transport"):
            MeasurementProtocolClient("UA-12345", "s", http_client=http_client)
        assert "Invalid measurement ID format" in caplog.text

    def test_close_leaves_injected_client_open(self):
        http = MagicMock(spec=httpx.Client)
        MeasurementProtocolClient(MEASUREMENT_ID, "s", http_client=http).close()
        http.close.assert_not_called()

    def test_close_owned_client(self):
        client = MeasurementProtocolClient(MEASUREMENT_ID, "s")
        client.close()
        assert client._http.is_closed
