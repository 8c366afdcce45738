"""
Tests for the credential vault
"""
import hashlib
import re

import pytest

from simwego_gateway.core.errors import DecryptionError, EncryptionError
from simwego_gateway.services.credential_vault import CredentialVault, mask, to_base36

API_KEY_PATTERN = re.compile(r"^swg_[0-9a-f]{8}_[0-9a-z]+_[0-9a-f]{32}$")


@pytest.fixture
def vault():
    return CredentialVault("unit-test-master-secret")


class TestEncryption:
    """Test password encryption and decryption"""

    def test_round_trip(self, vault):
        blob = vault.encrypt("p@ssw0rd-ünïcode")
        assert vault.decrypt(blob) == "p@ssw0rd-ünïcode"

    def test_ciphertext_format(self, vault):
        iv_hex, ciphertext_hex = vault.encrypt("secret").split(":")

        assert re.fullmatch(r"[0-9a-f]{32}", iv_hex)
        assert re.fullmatch(r"[0-9a-f]+", ciphertext_hex)
        assert len(ciphertext_hex) % 32 == 0

    def test_fresh_iv_per_encryption(self, vault):
        assert vault.encrypt("secret") != vault.encrypt("secret")

    def test_plaintext_not_in_ciphertext(self, vault):
        blob = vault.encrypt("plain-password")
        assert "plain-password" not in blob

    def test_empty_password_rejected(self, vault):
        with pytest.raises(EncryptionError):
            vault.encrypt("")

    def test_missing_master_secret_rejected(self):
        with pytest.raises(EncryptionError):
            CredentialVault("")

    @pytest.mark.parametrize("blob", ["", "no-separator", "zz:00", "00:zz", "abcd:00112233445566778899aabbccddeeff"])
    def test_malformed_blob(self, vault, blob):
        with pytest.raises(DecryptionError):
            vault.decrypt(blob)

    def test_ciphertext_not_block_aligned(self, vault):
        iv_hex, ciphertext_hex = vault.encrypt("secret").split(":")
        with pytest.raises(DecryptionError):
            vault.decrypt(f"{iv_hex}:{ciphertext_hex[:-2]}")

    def test_wrong_key_never_yields_plaintext(self, vault):
        blob = vault.encrypt("the-real-password")
        other = CredentialVault("another-master-secret")

        try:
            result = other.decrypt(blob)
        except DecryptionError:
            return
        assert result != "the-real-password"

    def test_key_derivation_is_scrypt_with_fixed_salt(self, vault):
        expected = hashlib.scrypt(
            b"unit-test-master-secret", salt=b"salt", n=16384, r=8, p=1, dklen=32
        )
        assert vault.derive_key() == expected

    def test_errors_hide_cipher_details(self, vault):
        with pytest.raises(DecryptionError) as exc_info:
            vault.decrypt("not-valid")
        body = exc_info.value.to_response()
        assert body["code"] == "CREDENTIAL_ERROR"
        assert "not-valid" not in str(body)


class TestApiKeys:
    """Test API key generation"""

    def test_format(self, vault):
        assert API_KEY_PATTERN.match(vault.generate_api_key("tenant-1"))

    def test_hash_segment_comes_from_tenant_id(self, vault):
        key = vault.generate_api_key("tenant-1")
        expected = hashlib.sha256(b"tenant-1").hexdigest()[:8]
        assert key.split("_")[1] == expected

    def test_tenant_id_not_embedded(self, vault):
        assert "tenant-1" not in vault.generate_api_key("tenant-1")

    def test_keys_are_unique(self, vault):
        keys = [vault.generate_api_key(f"tenant-{i}") for i in range(10000)]

        assert len(set(keys)) == 10000
        assert all(API_KEY_PATTERN.match(key) for key in keys)

    def test_custom_prefix(self):
        vault = CredentialVault("secret", api_key_prefix="test")
        assert vault.generate_api_key("tenant-1").startswith("test_")


class TestHelpers:
    """Test masking and base36 helpers"""

    @pytest.mark.parametrize("value,expected", [(0, "0"), (35, "z"), (36, "10"), (1295, "zz")])
    def test_to_base36(self, value, expected):
        assert to_base36(value) == expected

    def test_mask(self):
        assert mask("reseller") == "re***"
        assert mask("ab") == "***"
        assert mask("") == ""
        assert mask(None) == ""
        assert mask("swg_1234567890abcdef", visible=10) == "swg_123456***"
