"""HFT-NodeKit - control plane for trading bot nodes."""

__version__ = "0.3.0"
