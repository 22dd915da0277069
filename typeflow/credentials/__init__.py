"""
Credentials Module

Stored connection settings for database nodes and the clients built from
them.
"""

from .clients import MongoDBCredential, MySQLCredential, PostgresCredential, RedisCredential
from .service import CredentialService

__all__ = [
    "CredentialService",
    "MongoDBCredential",
    "MySQLCredential",
    "PostgresCredential",
    "RedisCredential",
]
