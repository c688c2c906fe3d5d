"""Shared table metadata."""

from sqlalchemy import MetaData

# Metadata for all scheduling tables
metadata = MetaData()
