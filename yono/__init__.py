"""Yono booking lifecycle and payment webhook reconciliation engine."""
