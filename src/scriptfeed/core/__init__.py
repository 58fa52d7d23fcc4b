"""Core types, errors and configuration shared by every scriptfeed layer."""
