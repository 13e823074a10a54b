import base64
import binascii
import logging
import os
import tempfile
from typing import Optional

import certifi

logger = logging.getLogger("goprobe")

CA_BUNDLE_NAME = "goprobe-ca-bundle.pem"


def decode_certificate(custom_ca: str) -> bytes:
    try:
        return base64.b64decode(custom_ca, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Custom certificate is not valid base64: {e}") from e


def write_ca_bundle(custom_ca: str, directory: Optional[str] = None) -> Optional[str]:
    """
    Write the certifi bundle followed by a base64 encoded CA (e.g. the one signing the
    governance ports or the api servers) into one PEM file and return its path.
    Returns None when there is no custom CA.
    """

    if not custom_ca:
        return None

    certificate = decode_certificate(custom_ca)
    path = os.path.join(directory or tempfile.gettempdir(), CA_BUNDLE_NAME)

    with open(certifi.where(), "rb") as base_bundle:
        base = base_bundle.read()

    with open(path, "wb") as outfile:
        outfile.write(base)
        if base and not base.endswith(b"\n"):
            outfile.write(b"\n")
        outfile.write(certificate)

    logger.info(f"Trusting the custom certificate through {path}")
    return path
