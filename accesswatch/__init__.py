"""AccessWatch — anomaly detection for credential-reader access events."""

__version__ = "0.4.0"
