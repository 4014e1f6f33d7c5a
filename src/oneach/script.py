"""Building remote scripts and transfer paths for zones."""

from __future__ import annotations

import posixpath
import re

from .errors import ConfigurationError, PathValidationError

# Heredoc delimiter used to embed user scripts. A script containing it cannot
# be embedded and is rejected.
SCRIPT_EOF_MARKER = "288dd530"

# The transport treats this exit status as "reboot the host when complete".
REBOOT_EXIT_STATUS = 113

ZONES_ROOT = "/zones"
ZONE_ROOT_MARKER = "root"

_ZONENAME_RE = re.compile(r"^[a-zA-Z0-9-]+$")


def check_script(script: str) -> None:
    if SCRIPT_EOF_MARKER in script:
        raise ConfigurationError("unsupported command (contains our marker)")


def wrap_script(zonename: str, script: str) -> str:
    """Build a global zone script that runs ``script`` inside a zone.

    The user's script is fed to a login bash in the zone on stdin, so it may
    use pipes, redirections and expansions without any quoting. Exit status
    113 is reported as 1.
    """
    check_script(script)
    if not _ZONENAME_RE.match(zonename):
        raise ConfigurationError(f'invalid zonename: "{zonename}"')

    # Plain concatenation: formatting would require escaping the user's script.
    return (
        "cat << '" + SCRIPT_EOF_MARKER + "' | "
        "/usr/sbin/zlogin -Q " + zonename + " bash -l\n"
        + script + "\n"
        + SCRIPT_EOF_MARKER + "\n"
        "rv=$?\n"
        "if [[ $rv -eq " + str(REBOOT_EXIT_STATUS) + " ]]; then exit 1; "
        "else exit $rv ; fi"
    )


def zone_path(zonename: str, path: str) -> str:
    """Global zone path of ``path`` inside the zone's root filesystem."""
    return posixpath.normpath(
        posixpath.join(ZONES_ROOT, zonename, ZONE_ROOT_MARKER, path.lstrip("/"))
    )


def validate_zone_path(zonepath: str, zonename: str) -> None:
    """Check that a global zone path lands inside the given zone's root.

    This catches operator mistakes such as "../" components. It is not a
    security boundary: a symlink inside the zone can still point elsewhere,
    and there is no way to tell ahead of time.
    """
    parts = posixpath.normpath(zonepath).split("/")
    if (
        len(parts) < 4
        or parts[0] != ""
        or "/" + parts[1] != ZONES_ROOT
        or parts[2] != zonename
        or parts[3] != ZONE_ROOT_MARKER
    ):
        raise PathValidationError(
            f'path "{zonepath}" is not contained inside zone "{zonename}"'
        )
