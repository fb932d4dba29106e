"""Tests for pairing artifact encoding."""

import base64

from otpgate.services.session.pairing import DATA_URL_PREFIX, encode_pairing_artifact


def test_encodes_png_data_url():
    """Test that the payload becomes a PNG data URL."""
    artifact = encode_pairing_artifact("2@abc,def,ghi")

    assert artifact.startswith(DATA_URL_PREFIX)
    png = base64.b64decode(artifact[len(DATA_URL_PREFIX):])
    assert png.startswith(b"\x89PNG")


def test_distinct_payloads_give_distinct_artifacts():
    """Test that the image depends on the payload."""
    assert encode_pairing_artifact("one") != encode_pairing_artifact("two")
