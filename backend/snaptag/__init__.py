"""Snaptag: image upload, storage and AI tagging service."""
