"""Merge package: staging -> target upsert."""
