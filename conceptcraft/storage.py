"""Local key/value persistence and the active-concept store."""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

import structlog
from pydantic import TypeAdapter, ValidationError

from .errors import StorageUnavailable, ValidationFailed
from .schemas import BusinessConcept, Persona, StoredPersona

logger = structlog.get_logger(__name__)

CONCEPT_KEY = "conceptcraft_current_concept"
PERSONAS_KEY = "conceptcraft_personas"
STEP_KEY = "conceptcraft_current_step"

STATE_VERSION = 1
MAX_STEP = 4

MUTABLE_CONCEPT_FIELDS = frozenset(
    {
        "problem_statement",
        "solution_statement",
        "target_persona_description",
        "lean_canvas_data",
        "pitch_deck_slides_data",
    }
)

T = TypeVar("T")

_persona_list = TypeAdapter(List[StoredPersona])


class KeyValueStore(Protocol):
    """String-to-string storage; every ``set`` replaces the whole value."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """Dictionary-backed store used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Persist all keys in one JSON file, rewritten atomically on every write."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._cache: Optional[Dict[str, str]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> Dict[str, str]:
        if self._cache is not None:
            return self._cache
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            self._cache = {}
            return self._cache
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {self._path}: {exc}") from exc

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("storage_file_corrupt", path=str(self._path))
            data = {}
        if not isinstance(data, dict):
            logger.warning("storage_file_corrupt", path=str(self._path))
            data = {}
        self._cache = {str(key): value for key, value in data.items() if isinstance(value, str)}
        return self._cache

    def _write_all(self, data: Dict[str, str]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write {self._path}: {exc}") from exc
        self._cache = data

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = dict(self._read_all())
        data[key] = value
        self._write_all(data)

    def delete(self, key: str) -> None:
        data = dict(self._read_all())
        if key in data:
            del data[key]
            self._write_all(data)


# ---------------------------------------------------------------------------
# Versioned envelopes
# ---------------------------------------------------------------------------


def wrap_payload(data: Any) -> str:
    """Encode *data* inside the current version envelope."""

    return json.dumps({"version": STATE_VERSION, "data": data})


def unwrap_payload(raw: str) -> Any:
    """Decode an envelope, migrating bare legacy payloads as version 0.

    Raises ``ValueError`` for malformed JSON or an unknown version.
    """

    payload = json.loads(raw)
    if isinstance(payload, dict) and set(payload) == {"version", "data"}:
        version = payload["version"]
        if version != STATE_VERSION:
            raise ValueError(f"unsupported state version {version!r}")
        return payload["data"]
    return payload


def _parse_concept(data: Any) -> Optional[BusinessConcept]:
    if data is None:
        return None
    return BusinessConcept.model_validate(data)


def _parse_step(data: Any) -> int:
    if isinstance(data, bool) or not isinstance(data, (int, str)):
        raise ValueError(f"current step must be an integer, got {data!r}")
    step = int(data)
    if not 0 <= step <= MAX_STEP:
        raise ValueError(f"current step {step} out of range")
    return step


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Concept store
# ---------------------------------------------------------------------------


class ConceptStore:
    """Own the active concept, the persona list and the current-step pointer.

    State is read once by :meth:`load` and every mutation rewrites the affected
    key wholesale. Stored values that fail validation are discarded and the
    in-memory value falls back to its default.
    """

    def __init__(self, kv: KeyValueStore, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._kv = kv
        self._clock = clock
        self._concept: Optional[BusinessConcept] = None
        self._personas: List[StoredPersona] = []
        self._current_step = 0

    @property
    def current_concept(self) -> Optional[BusinessConcept]:
        return self._concept

    @property
    def personas(self) -> List[StoredPersona]:
        return list(self._personas)

    @property
    def current_step(self) -> int:
        return self._current_step

    def load(self) -> None:
        """Read the three stored keys, rejecting anything that does not validate."""

        self._concept = self._load_value(CONCEPT_KEY, _parse_concept, None)
        self._personas = self._load_value(PERSONAS_KEY, _persona_list.validate_python, [])
        self._current_step = self._load_value(STEP_KEY, _parse_step, 0)

    def reset(self) -> None:
        """Drop in-memory state without touching storage."""

        self._concept = None
        self._personas = []
        self._current_step = 0

    def _load_value(self, key: str, parse: Callable[[Any], T], default: T) -> T:
        raw = self._kv.get(key)
        if raw is None:
            return default
        try:
            return parse(unwrap_payload(raw))
        except (ValueError, ValidationError) as exc:
            logger.warning("stored_state_rejected", key=key, error=str(exc))
            return default

    def _next_timestamp(self, previous: Optional[datetime] = None) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _save_concept(self) -> None:
        data = self._concept.model_dump(mode="json", by_alias=True) if self._concept else None
        self._kv.set(CONCEPT_KEY, wrap_payload(data))

    def create_new_concept(self, user_id: str) -> BusinessConcept:
        """Replace the active concept with an empty one and rewind to step 0."""

        now = self._next_timestamp()
        self._concept = BusinessConcept(
            concept_id=uuid.uuid4().hex,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        self._save_concept()
        self.set_current_step(0)
        logger.info("concept_created", concept_id=self._concept.concept_id, user_id=user_id)
        return self._concept

    def update_concept(self, **updates: Any) -> BusinessConcept:
        """Merge *updates* into the active concept and persist it."""

        unknown = set(updates) - MUTABLE_CONCEPT_FIELDS
        if unknown:
            raise TypeError(f"cannot update concept fields: {sorted(unknown)}")
        if self._concept is None:
            raise ValidationFailed("Start a new business concept first.")

        merged = self._concept.model_dump()
        merged.update(updates)
        merged["updated_at"] = self._next_timestamp(self._concept.updated_at)
        self._concept = BusinessConcept.model_validate(merged)
        self._save_concept()
        logger.info(
            "concept_committed",
            concept_id=self._concept.concept_id,
            fields=sorted(updates),
        )
        return self._concept

    def upsert_persona(self, persona: Persona) -> StoredPersona:
        """Store *persona* as the active concept's persona.

        A concept keeps one entry: saving again replaces it in place and
        keeps its ``persona_id``.
        """

        if self._concept is None:
            raise ValidationFailed("Start a new business concept first.")
        concept_id = self._concept.concept_id
        existing = next((item for item in self._personas if item.business_concept_id == concept_id), None)
        stored = StoredPersona(
            **persona.model_dump(),
            persona_id=existing.persona_id if existing is not None else uuid.uuid4().hex,
            business_concept_id=concept_id,
        )
        if existing is None:
            self._personas = [*self._personas, stored]
        else:
            self._personas = [stored if item is existing else item for item in self._personas]
        self._kv.set(
            PERSONAS_KEY,
            wrap_payload([item.model_dump(mode="json", by_alias=True) for item in self._personas]),
        )
        return stored

    def personas_for(self, concept_id: str) -> List[StoredPersona]:
        return [persona for persona in self._personas if persona.business_concept_id == concept_id]

    def set_current_step(self, step: int) -> None:
        if not 0 <= step <= MAX_STEP:
            raise ValueError(f"current step {step} out of range")
        self._current_step = step
        self._kv.set(STEP_KEY, wrap_payload(step))
