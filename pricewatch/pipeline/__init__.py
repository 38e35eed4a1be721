"""Batch and single-vendor scrape jobs."""
