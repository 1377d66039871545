"""
Command-line interface for vector-memory.

Sub-commands
------------
init              – Create the collections if they are missing.
store             – Embed and store a memory.
search            – Rank memories of a table against a query.
list              – List memories of a room, newest first.
delete            – Delete a memory by its ID.
count             – Print the number of memories in a room.
ingest            – Embed, chunk and store a knowledge document.
ask               – Search knowledge visible to an agent.
forget-knowledge  – Remove a knowledge item (optionally with its chunks).
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys

from .config import StoreConfig
from .errors import VectorMemoryError
from .models import MemoryRecord
from .service import VectorMemory

DEFAULT_TABLE = "messages"
DEFAULT_ID = "00000000-0000-0000-0000-000000000000"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vector-memory",
        description="Vector memory & knowledge store.",
    )
    parser.add_argument("--db", default=None, metavar="PATH", help="Path to the ChromaDB persistent store.")
    parser.add_argument("--dimension", type=int, default=None, metavar="N", help="Embedding dimension.")
    parser.add_argument("--model", default=None, metavar="NAME", help="sentence-transformers model name.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create missing collections.")

    # store
    p_store = sub.add_parser("store", help="Store a memory.")
    p_store.add_argument("text", nargs="?", help="Text to store (reads stdin if omitted).")
    _add_scope(p_store)
    p_store.add_argument("--user", default=DEFAULT_ID, help="User ID.")

    # search
    p_search = sub.add_parser("search", help="Search memories.")
    p_search.add_argument("query", help="Natural-language query.")
    _add_scope(p_search, room_required=False)
    p_search.add_argument("--threshold", type=float, default=None, metavar="SCORE")
    p_search.add_argument("-n", "--limit", type=int, default=None, metavar="N")
    p_search.add_argument("--offset", type=int, default=0, metavar="N")
    p_search.add_argument("--unique", action="store_true", help="Only unique memories.")
    p_search.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # list
    p_list = sub.add_parser("list", help="List memories of a room.")
    _add_scope(p_list)
    p_list.add_argument("--limit", type=int, default=100, metavar="N")
    p_list.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # delete
    p_delete = sub.add_parser("delete", help="Delete a memory by ID.")
    p_delete.add_argument("id", help="Memory ID to delete.")
    p_delete.add_argument("--table", default=DEFAULT_TABLE)

    # count
    p_count = sub.add_parser("count", help="Count memories in a room.")
    _add_scope(p_count)
    p_count.add_argument("--all", action="store_true", help="Include non-unique memories.")

    # ingest
    p_ingest = sub.add_parser("ingest", help="Store a knowledge document.")
    p_ingest.add_argument("text", nargs="?", help="Document text (reads stdin if omitted).")
    p_ingest.add_argument("--agent", default=DEFAULT_ID, help="Owning agent ID.")
    p_ingest.add_argument("--shared", action="store_true", help="Make the document visible to every agent.")

    # ask
    p_ask = sub.add_parser("ask", help="Search knowledge.")
    p_ask.add_argument("query", help="Natural-language query.")
    p_ask.add_argument("--agent", default=DEFAULT_ID, help="Agent ID.")
    p_ask.add_argument("--threshold", type=float, default=None, metavar="SCORE")
    p_ask.add_argument("-n", "--limit", type=int, default=None, metavar="N")
    p_ask.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # forget-knowledge
    p_forget = sub.add_parser("forget-knowledge", help="Remove a knowledge item.")
    p_forget.add_argument("id", help="Knowledge ID.")
    p_forget.add_argument("--with-chunks", action="store_true", help="Also remove its chunks.")

    return parser


def _add_scope(p: argparse.ArgumentParser, room_required: bool = True) -> None:
    p.add_argument("--table", default=DEFAULT_TABLE, help=f"Memory table (default: {DEFAULT_TABLE}).")
    p.add_argument("--room", required=room_required, default=None, help="Room ID.")
    p.add_argument("--agent", default=DEFAULT_ID if room_required else None, help="Agent ID.")


def _config(args: argparse.Namespace) -> StoreConfig:
    overrides = {
        "db_path": args.db,
        "embedding_dimension": args.dimension,
        "embedding_model": args.model,
    }
    return dataclasses.replace(
        StoreConfig.from_env(), **{k: v for k, v in overrides.items() if v is not None}
    )


def _read_text(text: str | None) -> str | None:
    if text is None:
        text = sys.stdin.read()
    return text if text.strip() else None


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return _run(args)
    except VectorMemoryError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _run(args: argparse.Namespace) -> int:
    vm = VectorMemory(_config(args))

    if args.command == "init":
        created = vm.init_schema()
        print("Schema created." if created else "Schema already up to date.")

    elif args.command == "store":
        text = _read_text(args.text)
        if text is None:
            print("Error: no text provided.", file=sys.stderr)
            return 1
        record = MemoryRecord(
            room_id=args.room,
            agent_id=args.agent,
            user_id=args.user,
            content={"text": text},
            embedding=vm.embedder.embed(text),
        )
        vm.memories.insert(record, table=args.table)
        vm.embedding_cache.link_to_record(text, record.id)
        print(f"Stored memory {record.id} (unique={record.unique}).")

    elif args.command == "search":
        results = vm.memories.search_by_embedding(
            vm.embedder.embed(args.query),
            table=args.table,
            room_id=args.room,
            agent_id=args.agent,
            unique_only=args.unique,
            threshold=args.threshold,
            limit=args.limit,
            offset=args.offset,
        )
        _print_results(results, args.as_json)

    elif args.command == "list":
        memories = vm.memories.list(args.room, args.table, limit=args.limit)
        if not memories:
            print("No memories stored.")
            return 0
        if args.as_json:
            print(json.dumps([_without_embedding(m.to_dict()) for m in memories], indent=2))
        else:
            for m in memories:
                print(f"id={m.id} ts={m.created_at:.0f} unique={m.unique}")
                print(f"    {m.content.text[:120]}")
                print()

    elif args.command == "delete":
        if vm.memories.delete_by_id(args.id, args.table):
            print(f"Deleted memory {args.id}.")
        else:
            print(f"No memory {args.id} in {args.table}.")

    elif args.command == "count":
        print(vm.memories.count(args.room, unique_only=not args.all, table=args.table))

    elif args.command == "ingest":
        text = _read_text(args.text)
        if text is None:
            print("Error: no text provided.", file=sys.stderr)
            return 1
        main_record, chunks = vm.knowledge.ingest(args.agent, text, vm.embedder, is_shared=args.shared)
        print(f"Stored knowledge {main_record.id} with {len(chunks)} chunk(s).")

    elif args.command == "ask":
        results = vm.knowledge.search(
            args.agent,
            vm.embedder.embed(args.query),
            query_text=args.query,
            threshold=args.threshold,
            limit=args.limit,
        )
        _print_results(results, args.as_json)

    elif args.command == "forget-knowledge":
        if args.with_chunks:
            removed = vm.knowledge.remove_with_chunks(args.id)
        else:
            removed = int(vm.knowledge.remove(args.id))
        print(f"Removed {removed} knowledge item(s).")

    return 0


def _without_embedding(data: dict) -> dict:
    data = dict(data)
    data.pop("embedding", None)
    return data


def _print_results(results, as_json: bool) -> None:
    if not results:
        print("No results found.")
        return
    if as_json:
        payload = []
        for r in results:
            item = r.to_dict()
            item["record"] = _without_embedding(item["record"])
            payload.append(item)
        print(json.dumps(payload, indent=2))
        return
    for i, r in enumerate(results, 1):
        print(f"[{i}] (similarity={r.similarity:.3f})")
        print(f"    {r.record.content.text[:200]}")
        print(f"    id={r.record.id}")
        print()


if __name__ == "__main__":
    sys.exit(main())
