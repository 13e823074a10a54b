import base64
from unittest.mock import patch

import pytest

from goprobe.common.ssl_utils import CA_BUNDLE_NAME, decode_certificate, write_ca_bundle

CA = b"-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----\n"


@pytest.fixture
def certifi_bundle(tmp_path):
    bundle = tmp_path / "cacert.pem"
    bundle.write_bytes(b"base")
    with patch("certifi.where", return_value=str(bundle)):
        yield bundle


def test_no_certificate(tmp_path):
    assert write_ca_bundle("", str(tmp_path)) is None
    assert list(tmp_path.iterdir()) == []


def test_write_ca_bundle(tmp_path, certifi_bundle):
    path = write_ca_bundle(base64.b64encode(CA).decode(), str(tmp_path))

    assert path == str(tmp_path / CA_BUNDLE_NAME)
    assert (tmp_path / CA_BUNDLE_NAME).read_bytes() == b"base\n" + CA
    # NOTE: the certifi bundle itself is left untouched
    assert certifi_bundle.read_bytes() == b"base"


def test_write_ca_bundle_defaults_to_temp_dir(tmp_path, monkeypatch, certifi_bundle):
    monkeypatch.setattr("tempfile.tempdir", str(tmp_path))

    assert write_ca_bundle(base64.b64encode(CA).decode()) == str(tmp_path / CA_BUNDLE_NAME)


def test_invalid_certificate():
    with pytest.raises(ValueError):
        decode_certificate("not base64!")
