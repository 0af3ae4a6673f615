"""Nonconformity lifecycle engine: findings, corrective actions, effectiveness."""

__version__ = "1.0.0"
