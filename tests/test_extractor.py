from devmem.config import ExtractionConfig
from devmem.extraction import EntityExtractor


def _names(extraction):
    return {(entity.name, entity.type) for entity in extraction.entities}


def _relation(extraction, source, target):
    source_entity = next(e for e in extraction.entities if e.name == source)
    target_entity = next(e for e in extraction.entities if e.name == target)
    for rel in extraction.relationships:
        if {rel.source, rel.target} == {source_entity.key, target_entity.key}:
            return rel
    return None


def test_session_cache_note():
    extraction = EntityExtractor().extract("Use Redis for session cache, owned by Alice")
    assert _names(extraction) == {
        ("Redis", "technology"),
        ("session cache", "concept"),
        ("Alice", "person"),
    }
    assert len(extraction.relationships) == 3
    owner = _relation(extraction, "session cache", "Alice")
    assert owner.type == "belongs_to"
    assert owner.source == ("session cache", "concept")
    assert extraction.entity("Alice", "person").observation == "Use Redis for session cache, owned by Alice"


def test_relation_cues():
    extraction = EntityExtractor().extract(
        "Phoenix depends on Postgres. Bob works on Phoenix. Billing service was written by Carol."
    )
    assert _relation(extraction, "Phoenix", "PostgreSQL").type == "depends_on"
    assert ("Bob", "concept") in _names(extraction) or ("Bob", "person") in _names(extraction)
    assert _relation(extraction, "Phoenix", "Carol").type == "related_to"


def test_people_handles_files_and_projects():
    text = (
        "Paired with Dana Scully on the PaymentGateway refactor. "
        "cc @mulder about src/payments/gateway.py and the Acme Corp contract."
    )
    names = _names(EntityExtractor().extract(text))
    assert ("Dana Scully", "person") in names
    assert ("PaymentGateway", "project") in names
    assert ("mulder", "person") in names
    assert ("src/payments/gateway.py", "file") in names
    assert ("Acme Corp", "organization") in names


def test_technology_vocabulary_is_canonical():
    extraction = EntityExtractor().extract("Ported the worker from node.js to Go, deployed with GitHub Actions on k8s")
    names = _names(extraction)
    assert ("Node.js", "technology") in names
    assert ("Go", "technology") in names
    assert ("GitHub Actions", "technology") in names
    assert ("Kubernetes", "technology") in names


def test_ambiguous_words_need_capitals():
    names = _names(EntityExtractor().extract("we should go over the rest of the react hooks later"))
    assert not any(kind == "technology" for _, kind in names)


def test_tags_are_promoted():
    extraction = EntityExtractor().extract("Tuned the eviction policy", tags=["redis", "perf", "Redis"])
    assert ("Redis", "technology") in _names(extraction)
    perf = extraction.entity("perf", "concept")
    assert perf.observation == 'Tagged "perf"'
    assert perf.from_tag
    assert len([e for e in extraction.entities if e.name == "Redis"]) == 1


def test_tag_matching_a_text_mention_is_not_duplicated():
    extraction = EntityExtractor().extract("Redis eviction notes", tags=["redis"])
    redis = extraction.entity("Redis", "technology")
    assert not redis.from_tag
    assert redis.observation == "Redis eviction notes"


def test_strength_decays_with_distance():
    extraction = EntityExtractor().extract(
        "Redis and Kafka feed the nightly batch job that eventually reaches Docker"
    )
    near = _relation(extraction, "Redis", "Kafka")
    far = _relation(extraction, "Redis", "Docker")
    assert near.strength > far.strength
    assert 0.0 < far.strength <= 1.0


def test_strength_bounds_follow_config():
    config = ExtractionConfig(proximity_scale=10.0, min_strength=0.2, max_strength=0.6)
    extraction = EntityExtractor(config).extract(
        "Redis sits in front, and many many many many many many words later comes Kafka"
    )
    assert all(0.2 <= rel.strength <= 0.6 for rel in extraction.relationships)


def test_extraction_is_deterministic():
    text = "Alice uses Docker and Terraform for the staging rollout of ProjectX"
    first = EntityExtractor().extract(text, ["infra"])
    second = EntityExtractor().extract(text, ["infra"])
    assert first == second


def test_max_entities_caps_first_mentions():
    config = ExtractionConfig(max_entities=2)
    extraction = EntityExtractor(config).extract("Redis, Kafka, Docker and Terraform")
    assert [entity.name for entity in extraction.entities] == ["Redis", "Kafka"]
    assert len(extraction.relationships) == 1


def test_observation_is_trimmed():
    config = ExtractionConfig(observation_chars=20)
    extraction = EntityExtractor(config).extract("Redis " + "padding " * 20)
    assert len(extraction.entity("Redis", "technology").observation) <= 20


def test_plain_prose_yields_nothing():
    extraction = EntityExtractor().extract("remember to water the plants")
    assert extraction.entities == []
    assert extraction.relationships == []


def test_non_ascii_names_stay_whole():
    names = _names(EntityExtractor().extract("Reviewed by José with Zoë"))
    assert ("José", "person") in names
    assert ("Zoë", "person") in names
    assert not {"Jos", "Zo"} & {name for name, _ in names}


def test_non_latin_capitalized_span_is_one_project():
    names = _names(EntityExtractor().extract("Запуск: Проект Феникс готов"))
    assert ("Проект Феникс", "project") in names
