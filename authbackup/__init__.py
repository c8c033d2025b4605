"""AuthBackup CLI - backup, disaster recovery and replication for the auth platform."""

__version__ = "0.1.0"
__author__ = "AuthBackup Team"
