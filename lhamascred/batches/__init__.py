"""Batch jobs: store, progress transaction, dispatch, reports."""
