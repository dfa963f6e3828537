"""Stable identifier of the machine the keys live on."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

MACHINE_ID_PATHS = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
DEVICE_NAMESPACE = uuid.UUID("5b1e7c58-93a4-4c33-9d3e-0f7f3b0f6a11")


def get_device_id(override: Optional[str] = None) -> str:
    if override:
        return override
    for path in MACHINE_ID_PATHS:
        try:
            machine_id = path.read_text().strip()
        except OSError:
            continue
        if machine_id:
            return str(uuid.uuid5(DEVICE_NAMESPACE, machine_id))
    return str(uuid.uuid5(DEVICE_NAMESPACE, str(uuid.getnode())))
