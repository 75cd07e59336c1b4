"""Spreadsheet to patch catalog synchronisation engine."""
