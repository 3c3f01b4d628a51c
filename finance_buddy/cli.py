#!/usr/bin/env python3
"""
Finance Buddy RAG CLI

Command-line interface for building and querying a tenant's index.

Usage:
    # Index
    finance-buddy-rag --data export.json --user UID --rebuild     # Rebuild from a record export
    finance-buddy-rag --user UID --ingest statement.txt           # Index a pasted statement
    finance-buddy-rag --stats                                     # Index statistics

    # Query
    finance-buddy-rag --data export.json --user UID --ask "..."   # Rebuild, then print the prompt
    finance-buddy-rag --user UID --ask "..."                      # Draft from the stored index
    finance-buddy-rag --data export.json --user UID --ask "..." --generate
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from finance_buddy.embeddings import create_provider_from_config
from finance_buddy.errors import RAGError
from finance_buddy.rag import Chunker, RAGEngine, SQLiteVectorStore
from finance_buddy.services import OpenAIAnswerGenerator, RAGService
from finance_buddy.sources import LocalBlobStorage, StaticRecordSource
from finance_buddy.utils import get_config_manager, get_logger, set_log_level

logger = get_logger('cli')


# ============================================
# SETUP
# ============================================

def build_engine(args, config) -> RAGEngine:
    db_path = args.db or config.get('rag.db_path')
    embedder = create_provider_from_config(config, args.embeddings)
    store = SQLiteVectorStore(db_path)
    chunker = Chunker(config.get('rag.chunk_max_chars', 800))
    return RAGEngine(embedder, store, chunker)


def build_service(args, config, engine: RAGEngine) -> RAGService:
    if args.data:
        source = StaticRecordSource.from_json_file(args.data)
    else:
        source = StaticRecordSource({"users": {}})

    blobs = LocalBlobStorage(args.blobs) if args.blobs else None

    generator = None
    if args.generate:
        generator = OpenAIAnswerGenerator(**config.section('generation'))

    return RAGService(
        engine,
        source,
        blob_storage=blobs,
        current_user=lambda: args.user,
        generator=generator,
        upload_chunk_chars=config.get('rag.upload_chunk_chars', 500),
        max_upload_bytes=config.get('rag.max_upload_bytes', 10 * 1024 * 1024)
    )


# ============================================
# COMMANDS
# ============================================

async def rebuild(args, service: RAGService):
    report = await service.refresh_index_for_current_user()

    print("\n" + "="*60)
    print(f"INDEX REBUILD: {report.user_id}")
    print("="*60)
    for line in report.summary_lines():
        print(line)


async def ingest(args, service: RAGService):
    with open(args.ingest, 'r', encoding='utf-8') as f:
        text = f.read()

    doc = await service.ingest_statement(args.user, text, source=args.source)
    print(f"Indexed {args.ingest} as {doc.source} document {doc.id}")


async def ask(args, service: RAGService):
    if args.data:
        # Fresh records available: rebuild and answer through the service
        answer = await service.ask_for_current_user(args.ask, args.top_k)
    else:
        answer = await service.engine.draft_answer(args.user, args.ask, args.top_k)
    print(answer)


def show_stats(engine: RAGEngine):
    stats = engine.store.get_stats()

    print("\n" + "="*60)
    print("INDEX STATISTICS")
    print("="*60)
    print(f"Total Chunks:  {stats.total_chunks}")
    print(f"Users:         {stats.total_users}")
    print(f"Dimension:     {stats.dimension or '-'}")
    print(f"Format:        {stats.embedding_format}")
    if stats.chunks_by_source:
        print("\nBy Source:")
        for source, count in sorted(stats.chunks_by_source.items()):
            print(f"  {source:<18} {count}")


# ============================================
# MAIN
# ============================================

def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Finance Buddy RAG CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global options
    parser.add_argument('--config', type=str, help='Config directory (settings.yaml)')
    parser.add_argument('--db', type=str, help='Index database path')
    parser.add_argument('--embeddings', type=str, help='Embeddings provider override')
    parser.add_argument('--user', type=str, help='User ID')
    parser.add_argument('--data', type=str, metavar='FILE', help='JSON record export')
    parser.add_argument('--blobs', type=str, metavar='DIR', help='Directory holding uploaded files')
    parser.add_argument('--top-k', type=int, default=None, help='Context chunks per prompt')

    # Commands
    parser.add_argument('--rebuild', action='store_true', help='Rebuild the user index')
    parser.add_argument('--ingest', type=str, metavar='FILE', help='Index a text file')
    parser.add_argument('--source', type=str, default='statement', help='Source tag for --ingest')
    parser.add_argument('--ask', type=str, metavar='QUESTION', help='Build a prompt for a question')
    parser.add_argument('--generate', action='store_true', help='Send the prompt to the LLM')
    parser.add_argument('--stats', action='store_true', help='Show index statistics')

    return parser, parser.parse_args(argv)


async def run(args, config) -> int:
    engine = build_engine(args, config)
    try:
        if args.stats:
            show_stats(engine)
            return 0

        service = build_service(args, config, engine)
        if args.rebuild:
            await rebuild(args, service)
        elif args.ingest:
            await ingest(args, service)
        elif args.ask:
            if args.top_k is None:
                args.top_k = config.get('rag.top_k', 6)
            await ask(args, service)
        return 0
    finally:
        engine.store.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser, args = parse_args(argv)

    if not (args.stats or args.rebuild or args.ingest or args.ask):
        parser.print_help()
        print("\n💡 Examples:")
        print("  finance-buddy-rag --data export.json --user u1 --rebuild")
        print("  finance-buddy-rag --data export.json --user u1 --ask 'How is my emergency fund?'")
        print("  finance-buddy-rag --stats")
        return 1

    if (args.rebuild or args.ingest or args.ask) and not args.user:
        parser.error("--user is required for --rebuild, --ingest and --ask")
    if args.rebuild and not args.data:
        parser.error("--rebuild needs --data (a rebuild replaces the user's index)")

    config = get_config_manager(args.config)
    config.load_global_config()
    set_log_level(config.get('logging.level', 'INFO'))

    try:
        return asyncio.run(run(args, config))
    except (RAGError, OSError) as e:
        logger.error(f"Command failed: {e}")
        print(f"❌ {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
