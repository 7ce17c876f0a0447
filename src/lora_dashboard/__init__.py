"""LoRa telemetry dashboard: poll, reconcile, alert, render."""

__version__ = "0.1.0"
