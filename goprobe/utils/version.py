import subprocess

import goprobe


def get_version() -> str:
    # the version string was patched by a release - return __version__ which will be correct
    if goprobe.__version__ != "dev":
        return goprobe.__version__

    # we are running from an unreleased dev version
    try:
        tag = subprocess.check_output(["git", "describe", "--tags"], stderr=subprocess.DEVNULL).decode().strip()
        status = subprocess.check_output(["git", "status", "--porcelain"], stderr=subprocess.DEVNULL).decode().strip()
        dirty = "-dirty" if status else ""

        return f"{tag}{dirty}"
    except Exception:
        return goprobe.__version__
