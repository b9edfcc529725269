"""Tests for client identity extraction (IP resolution, IP hash, device fingerprint)."""

from authcore.shared.client_identity.fingerprint import (
    DEFAULT_ACCEPT_ENCODING,
    DEFAULT_ACCEPT_LANGUAGE,
    HASH_LENGTH,
    UNKNOWN_IP,
    RequestContext,
    generate_fingerprint,
    get_client_ip,
    hash_ip,
)

BROWSER = {
    "user-agent": "Mozilla/5.0 Chrome/126.0",
    "accept-language": "de-DE,de;q=0.9",
    "accept-encoding": "gzip, br",
}


class TestGetClientIp:
    def test_first_forwarded_for_entry_wins(self):
        headers = {"x-forwarded-for": " 203.0.113.7 , 10.0.0.1, 10.0.0.2", "x-real-ip": "198.51.100.1"}
        assert get_client_ip(headers) == "203.0.113.7"

    def test_falls_back_to_real_ip(self):
        assert get_client_ip({"x-real-ip": " 198.51.100.1 "}) == "198.51.100.1"

    def test_empty_forwarded_for_entry_falls_through(self):
        assert get_client_ip({"x-forwarded-for": " , 10.0.0.1", "x-real-ip": "198.51.100.1"}) == "198.51.100.1"

    def test_unknown_when_no_headers(self):
        assert get_client_ip({}) == UNKNOWN_IP == "unknown"

    def test_peer_fallback_used_only_without_proxy_headers(self):
        assert get_client_ip({}, fallback="127.0.0.1") == "127.0.0.1"
        assert get_client_ip({"x-real-ip": "198.51.100.1"}, fallback="127.0.0.1") == "198.51.100.1"

    def test_header_lookup_is_case_insensitive(self):
        assert get_client_ip({"X-Forwarded-For": "203.0.113.9"}) == "203.0.113.9"


class TestFingerprint:
    def test_deterministic_and_fixed_length(self):
        first = generate_fingerprint(BROWSER)
        assert first == generate_fingerprint(dict(BROWSER))
        assert len(first) == HASH_LENGTH
        assert all(c in "0123456789abcdef" for c in first)

    def test_each_header_contributes(self):
        base = generate_fingerprint(BROWSER)
        for name in BROWSER:
            changed = {**BROWSER, name: BROWSER[name] + "x"}
            assert generate_fingerprint(changed) != base

    def test_missing_headers_still_produce_a_value(self):
        assert len(generate_fingerprint({})) == HASH_LENGTH

    def test_unrelated_headers_ignored(self):
        assert generate_fingerprint({**BROWSER, "cookie": "a=b"}) == generate_fingerprint(BROWSER)


class TestHashIp:
    def test_one_way_and_truncated(self):
        digest = hash_ip("1.2.3.4")
        assert len(digest) == HASH_LENGTH
        assert "1.2.3.4" not in digest
        assert digest == hash_ip("1.2.3.4")
        assert digest != hash_ip("9.9.9.9")


class TestRequestContext:
    def test_from_headers(self):
        ctx = RequestContext.from_headers({**BROWSER, "x-forwarded-for": "1.2.3.4"}, peer="127.0.0.1")
        assert ctx.client_ip == "1.2.3.4"
        assert ctx.fingerprint == generate_fingerprint(BROWSER)
        assert ctx.ip_hash == hash_ip("1.2.3.4")

    def test_from_headers_uses_peer_without_proxy_headers(self):
        ctx = RequestContext.from_headers(BROWSER, peer="127.0.0.1")
        assert ctx.client_ip == "127.0.0.1"

    def test_from_client_uses_default_accept_headers(self):
        ctx = RequestContext.from_client("1.2.3.4", "curl/8.0")
        assert ctx.accept_language == DEFAULT_ACCEPT_LANGUAGE
        assert ctx.accept_encoding == DEFAULT_ACCEPT_ENCODING
        assert ctx.fingerprint == generate_fingerprint(
            {
                "user-agent": "curl/8.0",
                "accept-language": DEFAULT_ACCEPT_LANGUAGE,
                "accept-encoding": DEFAULT_ACCEPT_ENCODING,
            }
        )

    def test_from_client_with_blank_ip(self):
        assert RequestContext.from_client("", "").client_ip == UNKNOWN_IP
