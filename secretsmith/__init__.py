"""secretsmith — materialize vault secrets onto disk and reconcile systemd services."""

__version__ = "0.1.0"
