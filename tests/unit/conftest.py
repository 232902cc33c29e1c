"""
Unit test fixtures. Providers are scripted or mocked; stores run against a
throwaway SQLite file (see the root conftest).
"""
