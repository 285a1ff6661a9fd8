"""Retail store locator built on the Google Maps Places API."""
