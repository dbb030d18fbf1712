"""A small in-memory object store with the semantics of a Kubernetes API client."""

from __future__ import annotations

import copy
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any


class NotFoundError(LookupError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {location!r} not found")


class ConflictError(RuntimeError):
    """The object was changed since it was read."""


class AlreadyExistsError(ValueError):
    """An object with the same kind, namespace and name already exists."""


def _key(obj: Mapping[str, Any]) -> tuple[str, str, str]:
    meta = obj.get("metadata") or {}
    kind = obj.get("kind")
    name = meta.get("name")
    if not kind or not name:
        raise ValueError("object needs a kind and metadata.name")
    return kind, meta.get("namespace") or "", name


class InMemoryClient:
    """Stores objects as plain dicts keyed by kind, namespace and name.

    Objects carrying finalizers are only marked for deletion; they disappear
    once an update leaves them without finalizers.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._revision = 0

    def _next_revision(self) -> str:
        self._revision += 1
        return str(self._revision)

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        """Return a copy of the stored object."""
        key = (kind, namespace or "", name)
        try:
            return copy.deepcopy(self._objects[key])
        except KeyError:
            raise NotFoundError(*key) from None

    def create(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Store a new object, assigning it a UID and resource version."""
        key = _key(obj)
        if key in self._objects:
            raise AlreadyExistsError(f"{key[0]} {key[1]}/{key[2]} already exists")
        stored = copy.deepcopy(dict(obj))
        meta = stored.setdefault("metadata", {})
        meta.pop("deletionTimestamp", None)
        meta["uid"] = str(uuid.uuid4())
        meta["resourceVersion"] = self._next_revision()
        self._objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Replace a stored object, checking its resource version if it has one."""
        key = _key(obj)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(*key)
        current_meta = current["metadata"]
        stored = copy.deepcopy(dict(obj))
        meta = stored["metadata"]
        version = meta.get("resourceVersion")
        if version and version != current_meta["resourceVersion"]:
            raise ConflictError(
                f"{key[0]} {key[1]}/{key[2]} was modified: "
                f"have version {version}, stored {current_meta['resourceVersion']}"
            )
        meta["uid"] = current_meta["uid"]
        if "deletionTimestamp" in current_meta:
            meta["deletionTimestamp"] = current_meta["deletionTimestamp"]
        else:
            meta.pop("deletionTimestamp", None)
        meta["resourceVersion"] = self._next_revision()
        if "deletionTimestamp" in meta and not meta.get("finalizers"):
            del self._objects[key]
        else:
            self._objects[key] = stored
        return copy.deepcopy(stored)

    def delete(self, obj: Mapping[str, Any]) -> None:
        """Delete an object, or mark it for deletion while finalizers remain."""
        key = _key(obj)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(*key)
        meta = current["metadata"]
        if meta.get("finalizers"):
            if "deletionTimestamp" not in meta:
                meta["deletionTimestamp"] = datetime.now(timezone.utc).strftime(
                    "%Y-%m-%dT%H:%M:%SZ"
                )
                meta["resourceVersion"] = self._next_revision()
            return
        del self._objects[key]

    def list(self, kind: str, namespace: str | None = None) -> list[dict[str, Any]]:
        """Return copies of all objects of a kind, optionally in one namespace."""
        return [
            copy.deepcopy(obj)
            for (obj_kind, obj_ns, _), obj in sorted(self._objects.items())
            if obj_kind == kind and (namespace is None or obj_ns == (namespace or ""))
        ]