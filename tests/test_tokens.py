"""Tests for HMAC broker tokens."""
import time

from vnf_framework.appliance.models import Appliance
from vnf_framework.broker.tokens import HmacTokenIssuer


def appliance():
    return Appliance(id="vnf-1", network_id="net-1", dictionary_id="d", management_ip="10.0.0.5")


class TestHmacTokenIssuer:
    """Tests for HmacTokenIssuer."""

    def test_token_is_scoped(self):
        issuer = HmacTokenIssuer("secret")
        token = issuer.generate_token(appliance(), "Firewall.create", 60)

        assert token.target_address == "10.0.0.5"
        assert token.operation == "Firewall.create"
        assert not token.is_expired
        claims = issuer.decode(token.value)
        assert claims["sub"] == "vnf-1"
        assert claims["op"] == "Firewall.create"

    def test_validate(self):
        issuer = HmacTokenIssuer("secret")
        token = issuer.generate_token(appliance(), "Firewall.list", 60)

        assert issuer.validate_token(token.value)
        assert not HmacTokenIssuer("other").validate_token(token.value)

    def test_tampered_token_rejected(self):
        issuer = HmacTokenIssuer("secret")
        token = issuer.generate_token(appliance(), "Firewall.list", 60)
        payload, signature = token.value.split(".")

        assert not issuer.validate_token(payload + "x." + signature)
        assert not issuer.validate_token("garbage")
        assert issuer.decode("garbage") is None

    def test_tokens_are_unique(self):
        issuer = HmacTokenIssuer("secret")
        first = issuer.generate_token(appliance(), "Firewall.list", 60)
        second = issuer.generate_token(appliance(), "Firewall.list", 60)
        assert first.value != second.value

    def test_expired_token_invalid(self, monkeypatch):
        issuer = HmacTokenIssuer("secret")
        token = issuer.generate_token(appliance(), "Firewall.list", 1)

        later = time.time() + 5
        monkeypatch.setattr(time, "time", lambda: later)

        assert not issuer.validate_token(token.value)

    def test_random_key_without_secret(self):
        """Without a secret, tokens still round-trip within one issuer."""
        issuer = HmacTokenIssuer()
        token = issuer.generate_token(appliance(), "NAT.create", 30)
        assert issuer.validate_token(token.value)
        assert issuer.token_target(token.value) == "10.0.0.5"
