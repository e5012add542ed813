"""
Test helper utilities for cpap-export testing.

This module provides reusable utilities for:
- Building synthetic EDF/EDF+ files (raw bytes and pyedflib-written)
- Building SpO2 Assistant exports
- Building in-memory FileRecords for reconciliation tests
"""
