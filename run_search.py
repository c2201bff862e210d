#!/usr/bin/env python3
"""
CLI entry point for running query-DSL searches.

Loads events from an NDJSON or JSON array file into an in-memory store (or
opens an existing SQLite database) and runs a single query, a named
template, a saved search, or a batch of named queries.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from dsl_search import SearchConfig, SearchEngine, SQLiteEventStore, list_templates, load_config
from dsl_search.storage import SavedSearchStorage

logger = logging.getLogger('dsl_search.cli')


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def serialize_for_json(obj: Any) -> Any:
    """Recursively serialize objects for JSON output.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable version of the object
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {k: serialize_for_json(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [serialize_for_json(item) for item in obj]
    else:
        return obj


def load_events(input_file: str) -> List[Dict[str, Any]]:
    """Load events from NDJSON or JSON array file.

    Args:
        input_file: Path to input file (NDJSON or JSON)

    Returns:
        List of event dictionaries

    Raises:
        ValueError: If file format is invalid
    """
    events = []
    path = Path(input_file)

    if not path.exists():
        raise ValueError(f"Input file not found: {input_file}")

    with open(path, 'r') as f:
        content = f.read().strip()

        if not content:
            return events

        if content.startswith('['):
            try:
                events = json.loads(content)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON array: {e}")
            if not isinstance(events, list):
                raise ValueError("JSON must be an array of objects")
        else:
            for line_num, line in enumerate(content.split('\n'), 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    event = json.loads(line)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Line {line_num}: Invalid JSON: {e}")
                if not isinstance(event, dict):
                    raise ValueError(f"Line {line_num}: Event must be a JSON object")
                events.append(event)

    return events


def parse_raw_query(text: str) -> Any:
    """Treat text starting with '{' as a JSON query document, else a compact string.

    Raises:
        ValueError: If the text looks like JSON but does not parse
    """
    stripped = text.strip()
    if stripped.startswith('{'):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON query: {e}")
    return text


def load_batch(batch_file: str) -> Dict[str, Any]:
    """Load named queries from a JSON file.

    Expected format:
    {
        "name_1": "severity:error source:api",
        "name_2": {"query": {...}, "aggs": {...}},
        ...
    }

    Raises:
        ValueError: If file format is invalid
    """
    path = Path(batch_file)

    if not path.exists():
        raise ValueError(f"Batch file not found: {batch_file}")

    with open(path, 'r') as f:
        try:
            content = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in batch file: {e}")

    if not isinstance(content, dict):
        raise ValueError("Batch file must contain a JSON object")

    for name, query in content.items():
        if not isinstance(query, (str, dict)):
            raise ValueError(f"Query '{name}': must be a string or an object")

    return content


def build_engine(
    db_path: Optional[str],
    events_file: Optional[str],
    config: SearchConfig,
) -> SearchEngine:
    """Open or populate a store and wrap it in an engine.

    Raises:
        ValueError: If neither a database nor an events file is given
    """
    if db_path:
        store = SQLiteEventStore(db_path, table=config.table)
    elif events_file:
        store = SQLiteEventStore(':memory:', table=config.table)
    else:
        raise ValueError("Either --db or --events is required")

    store.init_schema()
    if events_file:
        count = store.insert_events(load_events(events_file))
        logger.info(f"Loaded {count} events from {events_file}")

    return SearchEngine(store, config=config)


def execute_single_query(engine: SearchEngine, raw_query: Any) -> Dict[str, Any]:
    """Run one query and return the response as a dict."""
    return serialize_for_json(engine.search(raw_query).to_dict())


def execute_batch(engine: SearchEngine, queries: Dict[str, Any]) -> Dict[str, Any]:
    """Run named queries; a failing query is reported without stopping the rest."""
    results = {}

    for name, raw_query in queries.items():
        logger.debug(f"Executing query: {name}")
        try:
            results[name] = {
                "status": "success",
                **execute_single_query(engine, raw_query),
            }
        except Exception as e:
            logger.warning(f"Query '{name}' failed: {e}")
            results[name] = {"status": "error", "error": str(e)}

    return results


def write_output(payload: Any, output_file: Optional[str]) -> None:
    output = json.dumps(serialize_for_json(payload), indent=2)
    if output_file:
        Path(output_file).write_text(output)
        logger.info(f"Results saved to {output_file}")
    else:
        print(output)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="DSL Search - Run Elasticsearch-style queries against event logs"
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--db", help="Path to an SQLite event database")
    source.add_argument("-e", "--events", help="Path to events file (NDJSON or JSON array format)")

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("-q", "--query", help="Query document (JSON) or compact query string")
    mode.add_argument("-t", "--template", help="Name of a built-in query template")
    mode.add_argument("-b", "--batch", help="Path to JSON file of named queries")
    mode.add_argument("--saved", help="ID of a saved search (see --saved-file)")
    mode.add_argument("--list-templates", action="store_true", help="Print the built-in templates")

    parser.add_argument("--saved-file", default="saved_searches.json", help="Saved searches JSON file")
    parser.add_argument("-c", "--config", help="Path to YAML configuration")
    parser.add_argument("-o", "--output", help="Output file path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.list_templates:
        write_output(list_templates(), args.output)
        return 0

    try:
        config = load_config(args.config) if args.config else SearchConfig()
        engine = build_engine(args.db, args.events, config)

        if args.batch:
            write_output(execute_batch(engine, load_batch(args.batch)), args.output)
            return 0

        if args.template:
            templates = list_templates()
            if args.template not in templates:
                raise ValueError(f"Unknown template: {args.template}")
            raw_query = templates[args.template]
        elif args.saved:
            saved = SavedSearchStorage(args.saved_file).get_by_id(args.saved)
            if saved is None:
                raise ValueError(f"Saved search '{args.saved}' not found")
            raw_query = saved.query
        else:
            raw_query = parse_raw_query(args.query)

        write_output(execute_single_query(engine, raw_query), args.output)
        return 0

    except Exception as e:
        print(json.dumps({"error": str(e)}, indent=2), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
