"""tunnelkeeper - supervise a fleet of cloudflared tunnels."""

__version__ = "0.1.0"
__description__ = "Lifecycle supervisor for cloudflared tunnels"
__package_name__ = "tunnelkeeper"

TUNNELKEEPER_ASCII_ART = r"""
  _                          _ _
 | |_ _  _ _ _  _ _  ___ ___| | |_____ ___ _ __  ___ _ _
 |  _| || | ' \| ' \/ -_)___| | / / -_) -_) '_ \/ -_) '_|
  \__|\_,_|_||_|_||_\___|   |_|_\_\___\___| .__/\___|_|
                                          |_|
Keeps your cloudflared tunnels in line.

    VERSION {version}
"""


def get_version() -> str:
    """Get the current version of tunnelkeeper."""
    return __version__


def get_ascii_banner() -> str:
    """Get the ASCII art banner with version."""
    return TUNNELKEEPER_ASCII_ART.format(version=__version__)
