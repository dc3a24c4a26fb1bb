"""Leveraged and supply-only positions held through an external lending pool."""
