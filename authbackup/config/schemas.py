"""JSON schemas for AuthBackup configuration and recovery plans."""

BACKUP_CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["storage", "postgres", "redis", "schedule", "retention"],
    "properties": {
        "environment": {"type": "string"},
        "storage": {
            "type": "object",
            "required": ["local_path", "remote"],
            "properties": {
                "local_path": {"type": "string"},
                "remote": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "type": {"type": "string"},
                        "bucket": {"type": ["string", "null"]},
                        "region": {"type": ["string", "null"]},
                    },
                },
            },
        },
        "postgres": {
            "type": "object",
            "required": ["connection_string"],
            "properties": {
                "connection_string": {"type": "string"},
                "pg_dump_path": {"type": "string", "minLength": 1},
                "pg_restore_path": {"type": "string", "minLength": 1},
                "psql_path": {"type": "string", "minLength": 1},
                "compression": {"type": "boolean"},
            },
        },
        "redis": {
            "type": "object",
            "required": ["host", "port"],
            "properties": {
                "host": {"type": "string"},
                "port": {"type": "integer"},
                "db": {"type": "integer", "minimum": 0},
                "scratch_db": {"type": "integer", "minimum": 0},
                "compression": {"type": "boolean"},
            },
        },
        "compression": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "level": {"type": "integer", "minimum": 1, "maximum": 9},
            },
        },
        "encryption": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "algorithm": {"type": "string"},
                "key_path": {"type": ["string", "null"]},
            },
        },
        "schedule": {
            "type": "object",
            "required": ["enabled", "interval", "type"],
            "properties": {
                "enabled": {"type": "boolean"},
                "interval": {"type": "string"},
                "type": {"type": "string"},
            },
        },
        "retention": {
            "type": "object",
            "required": ["days", "max_backups"],
            "properties": {
                "days": {"type": "integer"},
                "max_backups": {"type": "integer"},
            },
        },
        "cross_region": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "regions": {"type": "array", "items": {"type": "string"}},
                "replication_delay": {"type": "integer"},
                "storage_type": {"type": "string"},
                "buckets": {"type": "object", "additionalProperties": {"type": "string"}},
            },
        },
        "recovery": {
            "type": "object",
            "properties": {
                "step_retry_delay": {"type": "number", "minimum": 0},
            },
        },
    },
}

STEP_TYPES = ["backup", "restore", "failover", "validation", "notification"]

RECOVERY_STEP_SCHEMA = {
    "type": "object",
    "required": ["id", "name", "type", "order"],
    "properties": {
        "id": {"type": "string", "pattern": "^[a-z0-9][a-z0-9-_]*$"},
        "name": {"type": "string"},
        "type": {"type": "string", "enum": STEP_TYPES},
        "order": {"type": "integer", "minimum": 0},
        "timeout": {"type": "number", "exclusiveMinimum": 0},
        "retries": {"type": "integer", "minimum": 0},
        "dependencies": {"type": "array", "items": {"type": "string"}},
        "config": {"type": "object"},
        "validation": {
            "type": "object",
            "required": ["command"],
            "properties": {
                "command": {"type": "string"},
                "expected_result": {},
            },
        },
    },
}

RECOVERY_PLAN_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "name", "steps"],
    "properties": {
        "id": {"type": "string", "pattern": "^[a-z0-9][a-z0-9-_]*$"},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "version": {"type": "string"},
        "priority": {"type": "string", "enum": ["low", "medium", "high", "critical"]},
        "trigger": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["manual", "automatic"]},
                "conditions": {"type": "array", "items": {"type": "string"}},
            },
        },
        "steps": {"type": "array", "minItems": 1, "items": RECOVERY_STEP_SCHEMA},
        "validation": {
            "type": "object",
            "properties": {
                "health_checks": {"type": "array", "items": {"type": "string"}},
                "data_integrity_checks": {"type": "array", "items": {"type": "string"}},
            },
        },
        "rollback": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "steps": {"type": "array", "items": RECOVERY_STEP_SCHEMA},
            },
        },
        "notifications": {
            "type": "object",
            "properties": {
                "channels": {
                    "type": "array",
                    "items": {"type": "string", "enum": ["email", "slack", "webhook"]},
                },
                "recipients": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
}
