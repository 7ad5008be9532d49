"""Authentication module - remote mirror credentials."""

from .keychain import KeychainManager, StoredCredentials

__all__ = ["KeychainManager", "StoredCredentials"]
