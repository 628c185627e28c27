"""wpactl - orchestrates wpa_supplicant, dhclient and MAC policy for wifi client connections."""

__version__ = "0.1.0"
