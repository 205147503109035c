"""Orchestration package: job config, per-table load and action dispatch."""
