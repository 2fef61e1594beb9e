"""Core domain package for igbridge.

Core contains mapping, provisioning, translation, filtering and recovery
logic without any Telegram, Instagram or storage-specific code, keeping the
bridge logic portable.
"""
