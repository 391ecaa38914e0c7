"""Service layer for ronin-onvif."""
