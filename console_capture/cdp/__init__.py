"""
console_capture/cdp/__init__.py

CDP session management, event normalization and NDJSON persistence.
"""
