"""wpactl infrastructure - wrappers around the system tools wpactl drives."""
