"""
School Ledger - accounting core for a school finance system

- Chart of accounts with a default school chart
- Double-entry journal posting with draft / posted / reversed lifecycle
- Trial balance derived from posted lines, never stored
- Idempotent monthly straight-line depreciation for fixed assets
"""

__version__ = "0.1.0"
