"""Tests for GA4 cookie parsing and identity resolution."""

import logging
import random
import re

from ga4_relay.identity import CookieParser, IdentityResolver

MEASUREMENT_ID = "G-TEST123"
SESSION_COOKIE = "_ga_TEST123"


class TestCookieParser:
    def test_client_id(self):
        assert CookieParser.parse_client_id("GA1.1.1234567890.1699999999") == (
            "1234567890.1699999999"
        )

    def test_client_id_other_version_and_depth(self):
        assert CookieParser.parse_client_id("GA1.2.111.222") == "111.222"

    def test_malformed_client_id(self):
        assert CookieParser.parse_client_id("garbage") is None
        assert CookieParser.parse_client_id("GA1.1.abc.def") is None
        assert CookieParser.parse_client_id("") is None

    def test_session_dot_format(self):
        value = "GS1.1.1700000000.3.1.1700000100.0.0.0"
        assert CookieParser.parse_session_id(value) == "1700000000"

    def test_session_dollar_format(self):
        value = "GS2.1.s1700000000$o3$g1$t1700000100"
        assert CookieParser.parse_session_id(value) == "1700000000"

    def test_both_session_formats_agree(self):
        dot = CookieParser.parse_session_id("GS1.1.1712345678.5.1.1712345999.0.0.0")
        dollar = CookieParser.parse_session_id("GS2.1.s1712345678$o5$g1$t1712345999")
        assert dot == dollar == "1712345678"

    def test_malformed_session(self):
        assert CookieParser.parse_session_id("nothing-here") is None

    def test_session_cookie_name(self):
        assert CookieParser.session_cookie_name(MEASUREMENT_ID) == SESSION_COOKIE

    def test_generated_client_id_format(self):
        client_id = CookieParser.generate_client_id(now=1700000000, rng=random.Random(1))

        assert re.match(r"^\d{10}\.1700000000$", client_id)

    def test_generated_id_survives_cookie_round_trip(self):
        client_id = CookieParser.generate_client_id()
        cookie = CookieParser.format_client_cookie(client_id)

        assert CookieParser.parse_client_id(cookie) == client_id


class TestIdentityResolver:
    def test_resolve_from_cookies(self):
        resolver = IdentityResolver(MEASUREMENT_ID)
        identity = resolver.resolve(
            {
                "_ga": "GA1.1.1234567890.1699999999",
                SESSION_COOKIE: "GS1.1.1700000000.3.1.1700000100.0.0.0",
            }
        )

        assert identity.client_id == "1234567890.1699999999"
        assert identity.session_id == "1700000000"

    def test_explicit_ids_win(self):
        resolver = IdentityResolver(MEASUREMENT_ID)
        identity = resolver.resolve(
            {"_ga": "GA1.1.1.1"}, client_id="555.666", session_id="777"
        )

        assert identity.client_id == "555.666"
        assert identity.session_id == "777"

    def test_no_cookies_generates_client_id_without_session(self):
        identity = IdentityResolver(MEASUREMENT_ID).resolve({})

        assert re.match(r"^\d{10}\.\d+$", identity.client_id)
        assert identity.session_id is None

    def test_malformed_client_cookie_logged_once(self, caplog):
        resolver = IdentityResolver(MEASUREMENT_ID)
        with caplog.at_level(logging.ERROR, logger="ga4_relay.identity"):
            identity = resolver.resolve({"_ga": "not-a-cookie"})

        assert re.match(r"^\d{10}\.\d+$", identity.client_id)
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "not-a-cookie" in errors[0].getMessage()

    def test_malformed_session_cookie_logged_once(self, caplog):
        resolver = IdentityResolver(MEASUREMENT_ID)
        with caplog.at_level(logging.ERROR, logger="ga4_relay.identity"):
            identity = resolver.resolve(
                {"_ga": "GA1.1.1.2", SESSION_COOKIE: "bogus"}
            )

        assert identity.session_id is None
        assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 1

    def test_no_session_without_measurement_id(self):
        identity = IdentityResolver("").resolve({SESSION_COOKIE: "GS1.1.1.1"})
        assert identity.session_id is None
