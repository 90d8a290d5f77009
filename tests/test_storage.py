from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conceptcraft.errors import StorageUnavailable, ValidationFailed
from conceptcraft.schemas import LeanCanvasData, Persona
from conceptcraft.storage import (
    CONCEPT_KEY,
    PERSONAS_KEY,
    STATE_VERSION,
    STEP_KEY,
    ConceptStore,
    InMemoryStore,
    JsonFileStore,
    unwrap_payload,
    wrap_payload,
)

FROZEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _legacy_concept() -> dict[str, object]:
    return {
        "conceptId": "legacy-1",
        "userId": "user-1",
        "problemStatement": "Old problem",
        "solutionStatement": "Old solution",
        "targetPersonaDescription": "",
        "leanCanvasData": None,
        "pitchDeckSlidesData": [],
        "createdAt": "2024-01-01T00:00:00+00:00",
        "updatedAt": "2024-01-02T00:00:00+00:00",
    }


def test_create_new_concept_starts_empty_at_step_zero(kv: InMemoryStore) -> None:
    concepts = ConceptStore(kv)
    concepts.set_current_step(3)

    concept = concepts.create_new_concept("user-1")

    assert concept.user_id == "user-1"
    assert concept.problem_statement == ""
    assert concept.lean_canvas_data is None
    assert concept.pitch_deck_slides_data == []
    assert concept.created_at == concept.updated_at
    assert concepts.current_step == 0


def test_update_merges_and_leaves_other_fields(store: ConceptStore) -> None:
    store.update_concept(problem_statement="P", solution_statement="S")
    concept = store.update_concept(lean_canvas_data=LeanCanvasData(channels="Referrals"))

    assert concept.problem_statement == "P"
    assert concept.solution_statement == "S"
    assert concept.lean_canvas_data.channels == "Referrals"


def test_updated_at_strictly_increases_with_a_frozen_clock(kv: InMemoryStore) -> None:
    concepts = ConceptStore(kv, clock=lambda: FROZEN)
    created = concepts.create_new_concept("user-1")

    first = concepts.update_concept(problem_statement="one")
    second = concepts.update_concept(problem_statement="two")

    assert created.updated_at < first.updated_at < second.updated_at
    assert second.created_at == created.created_at


def test_update_rejects_unknown_and_identity_fields(store: ConceptStore) -> None:
    with pytest.raises(TypeError):
        store.update_concept(user_id="someone-else")
    with pytest.raises(TypeError):
        store.update_concept(favourite_colour="blue")


def test_update_without_concept_fails(kv: InMemoryStore) -> None:
    with pytest.raises(ValidationFailed):
        ConceptStore(kv).update_concept(problem_statement="P")


def test_persisted_concept_uses_versioned_camel_case_envelope(kv: InMemoryStore, store: ConceptStore) -> None:
    store.update_concept(problem_statement="P")

    payload = json.loads(kv.get(CONCEPT_KEY))

    assert payload["version"] == STATE_VERSION
    assert payload["data"]["problemStatement"] == "P"
    assert "problem_statement" not in payload["data"]
    assert json.loads(kv.get(STEP_KEY)) == {"version": STATE_VERSION, "data": 0}


def test_reload_restores_committed_state(kv: InMemoryStore, store: ConceptStore) -> None:
    store.update_concept(problem_statement="P", solution_statement="S")
    store.set_current_step(1)

    reloaded = ConceptStore(kv)
    reloaded.load()

    assert reloaded.current_concept == store.current_concept
    assert reloaded.current_step == 1


def test_legacy_payload_without_envelope_is_migrated() -> None:
    kv = InMemoryStore({CONCEPT_KEY: json.dumps(_legacy_concept()), STEP_KEY: "2"})
    concepts = ConceptStore(kv)

    concepts.load()

    assert concepts.current_concept.concept_id == "legacy-1"
    assert concepts.current_concept.problem_statement == "Old problem"
    assert concepts.current_step == 2


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps({"version": 99, "data": _legacy_concept()}),
        json.dumps({"version": STATE_VERSION, "data": {"conceptId": "missing-fields"}}),
        json.dumps([1, 2, 3]),
    ],
)
def test_invalid_stored_concept_resets_to_default(raw: str) -> None:
    concepts = ConceptStore(InMemoryStore({CONCEPT_KEY: raw}))

    concepts.load()

    assert concepts.current_concept is None


@pytest.mark.parametrize("raw", [wrap_payload(9), wrap_payload(-1), wrap_payload(True), wrap_payload("two")])
def test_invalid_step_pointer_resets_to_zero(raw: str) -> None:
    concepts = ConceptStore(InMemoryStore({STEP_KEY: raw}))

    concepts.load()

    assert concepts.current_step == 0


def test_set_current_step_range(store: ConceptStore) -> None:
    store.set_current_step(4)
    assert store.current_step == 4
    with pytest.raises(ValueError):
        store.set_current_step(5)


def test_unwrap_payload_versions() -> None:
    assert unwrap_payload(wrap_payload({"a": 1})) == {"a": 1}
    assert unwrap_payload('{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError):
        unwrap_payload(json.dumps({"version": 0, "data": None}))


def test_personas_are_linked_to_the_active_concept(kv: InMemoryStore, store: ConceptStore) -> None:
    stored = store.upsert_persona(Persona(name="Dana", pain_points=["late invoices"]))
    concept_id = store.current_concept.concept_id

    assert stored.business_concept_id == concept_id
    assert store.personas_for(concept_id) == [stored]
    assert store.personas_for("other") == []

    reloaded = ConceptStore(kv)
    reloaded.load()
    assert reloaded.personas == [stored]
    assert json.loads(kv.get(PERSONAS_KEY))["data"][0]["painPoints"] == ["late invoices"]


def test_saving_a_persona_again_replaces_the_concept_entry(kv: InMemoryStore, store: ConceptStore) -> None:
    first = store.upsert_persona(Persona(name="Dana"))
    second = store.upsert_persona(Persona(name="Dana", demographics="30s, freelance designer"))
    concept_id = store.current_concept.concept_id

    assert second.persona_id == first.persona_id
    assert store.personas_for(concept_id) == [second]
    assert len(json.loads(kv.get(PERSONAS_KEY))["data"]) == 1

    store.create_new_concept("user-1")
    store.upsert_persona(Persona(name="Lee"))
    assert len(store.personas) == 2


def test_reset_clears_memory_but_not_storage(kv: InMemoryStore, store: ConceptStore) -> None:
    store.reset()

    assert store.current_concept is None
    assert kv.get(CONCEPT_KEY) is not None


def test_json_file_store_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    first = JsonFileStore(path)
    first.set("a", "1")
    first.set("b", "2")
    first.delete("a")

    second = JsonFileStore(path)

    assert second.get("a") is None
    assert second.get("b") == "2"
    assert not path.with_name("state.json.tmp").exists()


def test_json_file_store_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("][", encoding="utf-8")

    assert JsonFileStore(path).get("anything") is None


def test_json_file_store_ignores_undecodable_file(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_bytes(b"\xff\xfe{bad")
    kv = JsonFileStore(path)

    concepts = ConceptStore(kv)
    concepts.load()

    assert concepts.current_concept is None
    kv.set("a", "1")
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}


def test_json_file_store_write_failure_is_storage_unavailable(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    kv = JsonFileStore(blocker / "state.json")

    with pytest.raises(StorageUnavailable):
        kv.set("a", "1")
