"""rdsrecorder - Shared utilities."""
