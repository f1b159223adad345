"""Keyed credential stores."""

from sm_automation.credentials.store import (
    ChainedCredentialStore,
    CredentialStore,
    EnvCredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    SupabaseCredentialStore,
    credential_store_from_config,
)

__all__ = [
    "CredentialStore",
    "MemoryCredentialStore",
    "FileCredentialStore",
    "EnvCredentialStore",
    "SupabaseCredentialStore",
    "ChainedCredentialStore",
    "credential_store_from_config",
]
