"""provisionctl — declarative provisioning engine for Fedora workstations."""

__version__ = "0.1.0"
