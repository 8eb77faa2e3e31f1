"""Bulk client roster importer.

Spreadsheet / CSV -> canonical client records -> chunked submission to
PostgreSQL or an HTTP import endpoint -> one reconciled ImportReport.
"""

__version__ = "0.1.0"
