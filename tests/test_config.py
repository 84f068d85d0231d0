"""Tests for Settings loading."""

from ga4_relay.config import DEFAULT_COLLECTOR_URL, DEFAULT_TIMEOUT, Settings


class TestFromMapping:
    def test_stored_option_names(self):
        settings = Settings.from_mapping(
            {
                "measurement_id": " G-ABC123 ",
                "measurement_protocol_api_secret": "primary",
                "server_side_tracking": "1",
                "exclude_roles": ["administrator", "shop_manager"],
                "conversion_id": "555",
                "purchase_conversion_label": "xyz",
            }
        )

        assert settings.measurement_id == "G-ABC123"
        assert settings.resolved_api_secret == "primary"
        assert settings.server_side_enabled is True
        assert settings.excluded_roles == {"administrator", "shop_manager"}
        assert settings.ads_send_to == "AW-555/xyz"
        assert settings.collector_url == DEFAULT_COLLECTOR_URL
        assert settings.timeout == DEFAULT_TIMEOUT

    def test_secret_falls_back_to_secondary_field(self):
        settings = Settings.from_mapping(
            {"measurement_id": "G-X", "measurement_protocol_api_secret_select": "backup"}
        )

        assert settings.resolved_api_secret == "backup"
        assert settings.is_server_side_ready

    def test_single_role_string(self):
        settings = Settings.from_mapping({"exclude_roles": "administrator"})
        assert settings.is_excluded(["customer", "administrator"])
        assert not settings.is_excluded(["customer"])

    def test_purchase_event_defaults_on(self):
        assert Settings.from_mapping({}).purchase_event_enabled is True


class TestSettings:
    def test_ads_send_to_needs_both_parts(self):
        assert Settings(ads_conversion_id="555").ads_send_to is None
        assert Settings(ads_purchase_label="xyz").ads_send_to is None

    def test_not_ready_without_measurement_id(self):
        assert not Settings(api_secret="s").is_server_side_ready


class TestFromEnv:
    def test_reads_prefixed_variables(self):
        settings = Settings.from_env(
            {
                "GA4_RELAY_MEASUREMENT_ID": "G-ENV1",
                "GA4_RELAY_API_SECRET": "env-secret",
                "GA4_RELAY_SERVER_SIDE": "true",
                "GA4_RELAY_EXCLUDE_ROLES": "administrator, editor",
                "GA4_RELAY_TIMEOUT": "2.5",
                "GA4_RELAY_ANONYMOUS_TTL": "600",
            }
        )

        assert settings.measurement_id == "G-ENV1"
        assert settings.api_secret == "env-secret"
        assert settings.server_side_enabled is True
        assert settings.excluded_roles == {"administrator", "editor"}
        assert settings.timeout == 2.5
        assert settings.anonymous_ttl_seconds == 600

    def test_false_string_disables(self):
        settings = Settings.from_env({"GA4_RELAY_SERVER_SIDE": "0"})
        assert settings.server_side_enabled is False

    def test_custom_prefix(self):
        settings = Settings.from_env({"SHOP_MEASUREMENT_ID": "G-P"}, prefix="SHOP_")
        assert settings.measurement_id == "G-P"
