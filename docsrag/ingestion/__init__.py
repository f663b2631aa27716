"""Ingestion package for offline/ETL pipelines.

Discovers documents from the help site (sources), chunks and embeds them with
every registered model (orchestrator). run.py is the command-line entry point.
"""
