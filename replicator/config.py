"""Configuration settings for the replicator controller."""

import os

MAX_WRITE_RETRIES = int(os.environ.get("REPLICATOR_MAX_WRITE_RETRIES", "25"))

REPLICATOR_ROLES = [
    role.strip()
    for role in os.environ.get("REPLICATOR_ROLES", "_replicator,_admin").split(",")
    if role.strip()
]

DESIGN_DOC_ID = os.environ.get("REPLICATOR_DESIGN_DOC_ID", "_design/_replicator")
