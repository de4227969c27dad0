"""IP fingerprinting and client address selection."""

from bix.guard.ip_hash import client_ip, hash_ip


class TestHashIp:
    def test_deterministic(self):
        assert hash_ip("203.0.113.7") == hash_ip("203.0.113.7")

    def test_distinct_addresses_differ(self):
        assert hash_ip("203.0.113.7") != hash_ip("203.0.113.8")

    def test_format(self):
        token = hash_ip("198.51.100.23")
        assert token.startswith("ip_")
        assert len(token) == 9
        assert token[3:].isalnum()
        assert token[3:] == token[3:].lower()

    def test_unknown_is_hashed_too(self):
        assert hash_ip("unknown").startswith("ip_")

    def test_empty_string(self):
        assert hash_ip("") == "ip_000000"


class TestClientIp:
    def test_first_forwarded_hop_wins(self):
        assert client_ip("203.0.113.7, 10.0.0.1", "198.51.100.1", "127.0.0.1") == "203.0.113.7"

    def test_cloudflare_header_next(self):
        assert client_ip(None, "198.51.100.1", "127.0.0.1") == "198.51.100.1"

    def test_peer_fallback(self):
        assert client_ip(None, None, "127.0.0.1") == "127.0.0.1"

    def test_unknown_when_nothing_available(self):
        assert client_ip("", None, None) == "unknown"
