import argparse
import json
import logging

import yaml
from dotenv import load_dotenv

from devmem.embeddings import build_embedder
from devmem.engine import DevMemEngine
from devmem.errors import DevMemError
from devmem.graph import Direction
from devmem.logging_config import setup_logging
from devmem.memory import MemoryType
from devmem.retrieval import SearchMode
from devmem.settings import build_config

logger = logging.getLogger(__name__)


def _build_engine(config_path: str | None) -> DevMemEngine:
    config = build_config(config_path)
    embedder = build_embedder(config.embedding)
    if embedder is None:
        logger.warning("No embedder configured (set OPENAI_API_KEY); vector search is disabled")
    return DevMemEngine(config, embedder)


def _parse_metadata(items: list[str] | None) -> dict:
    metadata = {}
    for item in items or []:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"Metadata must look like key=value, got {item!r}")
        value = yaml.safe_load(raw) if raw else ""
        if isinstance(value, (dict, list)):
            value = raw
        metadata[key.strip()] = value
    return metadata


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _print_record_line(record, score: float | None = None) -> None:
    prefix = f"{score:.3f} | " if score is not None else ""
    title = record.title or record.content.splitlines()[0][:60]
    tags = f" [{', '.join(record.tags)}]" if record.tags else ""
    print(f"{prefix}{record.id} | {record.type.value} | {title}{tags}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DevMem CLI")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)
    types = [item.value for item in MemoryType]

    add_cmd = sub.add_parser("add", help="Store a new memory")
    add_cmd.add_argument("content", help="Memory content")
    add_cmd.add_argument("--title", default="", help="Memory title")
    add_cmd.add_argument("--type", default=MemoryType.NOTE.value, choices=types)
    add_cmd.add_argument("--tag", action="append", dest="tags", help="Tag (repeatable)")
    add_cmd.add_argument("--meta", action="append", help="Metadata key=value (repeatable)")

    get_cmd = sub.add_parser("get", help="Show one memory")
    get_cmd.add_argument("id")

    update_cmd = sub.add_parser("update", help="Update fields of a memory")
    update_cmd.add_argument("id")
    update_cmd.add_argument("--content")
    update_cmd.add_argument("--title")
    update_cmd.add_argument("--type", choices=types)
    update_cmd.add_argument("--tag", action="append", dest="tags", help="Replace tags (repeatable)")
    update_cmd.add_argument("--meta", action="append", help="Replace metadata key=value (repeatable)")

    delete_cmd = sub.add_parser("delete", help="Delete a memory")
    delete_cmd.add_argument("id")

    list_cmd = sub.add_parser("list", help="List recent memories")
    list_cmd.add_argument("--limit", type=int, default=20)
    list_cmd.add_argument("--offset", type=int, default=0)
    list_cmd.add_argument("--type", choices=types)
    list_cmd.add_argument("--tag", action="append", dest="tags")

    search_cmd = sub.add_parser("search", help="Search memories")
    search_cmd.add_argument("text", help="Query text")
    search_cmd.add_argument("--mode", default=SearchMode.AUTO.value, choices=[m.value for m in SearchMode])
    search_cmd.add_argument("--limit", type=int)
    search_cmd.add_argument("--offset", type=int, default=0)
    search_cmd.add_argument("--threshold", type=float)
    search_cmd.add_argument("--type", choices=types)
    search_cmd.add_argument("--tag", action="append", dest="tags")

    entities_cmd = sub.add_parser("entities", help="Search or list graph entities")
    entities_cmd.add_argument("text", nargs="?", help="Entity name to search for")
    entities_cmd.add_argument("--type", help="Entity type")
    entities_cmd.add_argument("--limit", type=int, default=20)

    entity_cmd = sub.add_parser("entity", help="Show one entity and its relationships")
    entity_cmd.add_argument("id")
    entity_cmd.add_argument(
        "--direction", default=Direction.BOTH.value, choices=[d.value for d in Direction]
    )

    path_cmd = sub.add_parser("path", help="Find a relationship path between two entities")
    path_cmd.add_argument("source", help="Entity id")
    path_cmd.add_argument("target", help="Entity id")
    path_cmd.add_argument("--max-depth", type=int, default=3)

    sub.add_parser("graph-stats", help="Show graph statistics")
    sub.add_parser("health", help="Show index health")
    sub.add_parser("reindex", help="Rebuild the graph and requeue missing embeddings")
    return parser


def _run(engine: DevMemEngine, args: argparse.Namespace) -> int:
    if args.command == "add":
        record = engine.create_memory(
            args.content,
            title=args.title,
            type=args.type,
            tags=args.tags,
            metadata=_parse_metadata(args.meta),
        )
        print(record.id)
        return 0

    if args.command == "get":
        record = engine.get_memory(args.id)
        if record is None:
            print(f"Memory {args.id} not found")
            return 1
        payload = record.to_dict()
        payload["entities"] = [entity.name for entity in engine.memory_entities(record.id)]
        _print_json(payload)
        return 0

    if args.command == "update":
        changes = {
            key: value
            for key, value in (
                ("content", args.content),
                ("title", args.title),
                ("type", args.type),
                ("tags", args.tags),
            )
            if value is not None
        }
        if args.meta is not None:
            changes["metadata"] = _parse_metadata(args.meta)
        record = engine.update_memory(args.id, **changes)
        if record is None:
            print(f"Memory {args.id} not found")
            return 1
        print(f"Updated {record.id}")
        return 0

    if args.command == "delete":
        if not engine.delete_memory(args.id):
            print(f"Memory {args.id} not found")
            return 1
        print(f"Deleted {args.id}")
        return 0

    if args.command == "list":
        if args.tags:
            records = engine.find_by_tags(args.tags, args.limit, args.offset)
        elif args.type:
            records = engine.find_by_type(args.type, args.limit, args.offset)
        else:
            records = engine.list_recent(args.limit, args.offset)
        for record in records:
            _print_record_line(record)
        return 0

    if args.command == "search":
        results = engine.query(
            args.text,
            mode=args.mode,
            limit=args.limit,
            offset=args.offset,
            threshold=args.threshold,
            type=args.type,
            tags=args.tags,
        )
        for item in results:
            _print_record_line(item.record, item.score)
            if item.matched_entities:
                print(f"      entities: {', '.join(item.matched_entities)}")
        if not results:
            print("No matches")
        return 0

    if args.command == "entities":
        if args.text:
            for match in engine.search_entities(args.text, args.limit, args.type):
                entity = match.entity
                print(
                    f"{match.score:.2f} | {entity.id} | {entity.type} | {entity.name} "
                    f"| relationships={match.relationship_count}"
                )
            return 0
        entities = (
            engine.entities_by_type(args.type, args.limit) if args.type else engine.all_entities()[: args.limit]
        )
        for entity in entities:
            print(f"{entity.id} | {entity.type} | {entity.name} | records={len(entity.record_ids)}")
        return 0

    if args.command == "entity":
        entity = engine.get_entity(args.id)
        if entity is None:
            print(f"Entity {args.id} not found")
            return 1
        payload = entity.to_dict()
        payload["relationships"] = [
            rel.to_dict() for rel in engine.get_relationships(args.id, args.direction)
        ]
        _print_json(payload)
        return 0

    if args.command == "path":
        walk = engine.find_path(args.source, args.target, args.max_depth)
        if not walk:
            print("No path")
            return 0
        for rel in walk:
            source = engine.get_entity(rel.from_id)
            target = engine.get_entity(rel.to_id)
            print(f"{source.name} -[{rel.type} {rel.strength:.2f}]-> {target.name}")
        return 0

    if args.command == "graph-stats":
        _print_json(engine.graph_statistics().__dict__)
        return 0

    if args.command == "health":
        _print_json(engine.health().to_dict())
        return 0

    if args.command == "reindex":
        report = engine.rebuild()
        engine.wait_for_indexing()
        _print_json(report.to_dict())
        return 0

    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    engine = _build_engine(args.config)
    try:
        code = _run(engine, args)
        engine.wait_for_indexing()
    except DevMemError as exc:
        logger.error("%s", exc)
        code = 2
    finally:
        engine.close()
    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
