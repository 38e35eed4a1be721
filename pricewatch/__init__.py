"""Pricewatch: vendor price tracking."""
