#!/usr/bin/env python3


class ReconciliationError(Exception):
    """Base error for a reconciliation run that cannot continue."""


class IngestionError(ReconciliationError):
    """Raised when an external export cannot be read at all."""
