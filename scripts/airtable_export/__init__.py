"""Airtable Enterprise bulk export.

Crawls every workspace and base of the configured enterprise accounts,
downloads each base's records (and optionally attachments) into PostgreSQL,
tags every write with a scan id so interrupted runs resume where they
stopped, and optionally removes rows that were not seen by the current run.
"""
