"""Lhamascred backend: batch CPF lookups reconciled through provider webhooks."""

__version__ = "0.1.0"
