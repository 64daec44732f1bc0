"""VNF Framework - dictionary-driven translation and reconciliation for VNF appliances."""

__version__ = "0.1.0"
