"""Blob storage for scan images."""
