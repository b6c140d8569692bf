"""Entry point for dbexplorer."""

import os
import sys
from pathlib import Path

USAGE = """\
dbexplorer - browse schemas, run SQL and edit table rows

Usage: dbexplorer [options]

Options:
  --split FILE          List the statements in FILE with their line ranges
  --format FILE         Print FILE reformatted
  --check               Connect and print the server version
  --run FILE            Run every statement in FILE
  --verbose, -v         Debug logging
  --help, -h            Show this help message

Connection options for --check and --run:
  --db-type TYPE        postgresql, mysql or sqlite
  --database NAME       Database name (file path for sqlite)
  --host HOST           Server host
  --port PORT           Server port
  --user USER           User name (password is read from DBEXPLORER_PASSWORD)
"""


def _option(args, name, default=None):
    if name in args:
        index = args.index(name)
        if index + 1 < len(args):
            return args[index + 1]
    return default


def _read(path):
    return Path(path).read_text(encoding="utf-8")


def split_command(path):
    from .sql_text import position_at, scan
    text = _read(path)
    for number, statement in enumerate(scan(text), start=1):
        start_line, _ = position_at(text, statement.start)
        end_line, _ = position_at(text, statement.end)
        first_line = statement.text.splitlines()[0]
        print(f"{number:>3}  lines {start_line + 1}-{end_line + 1}  {first_line}")
    return 0


def format_command(path):
    from .sql_text import format_sql
    print(format_sql(_read(path)))
    return 0


def _executor(args, logger):
    from .adapters import get_adapter
    from .executor import QueryExecutor

    adapter = get_adapter(_option(args, "--db-type", "postgresql"))
    database = _option(args, "--database")
    if adapter.requires_database and not database:
        print(f"{adapter.display_name} needs --database", file=sys.stderr)
        return None
    port = _option(args, "--port")
    conn_info = {
        "host": _option(args, "--host", "localhost"),
        "user": _option(args, "--user"),
        "password": os.environ.get("DBEXPLORER_PASSWORD"),
        "port": int(port) if port else adapter.default_port,
        "database": database,
    }
    return QueryExecutor(adapter, conn_info, logger=logger)


def check_command(args):
    import structlog

    logger = structlog.get_logger("dbexplorer")
    executor = _executor(args, logger)
    if executor is None:
        return 2
    try:
        version = executor.server_version()
    except Exception as exc:
        logger.error("connection_failed", db_type=executor.adapter.db_type, error=str(exc))
        return 1
    print(f"Connected to {executor.adapter.display_name} {version or '(unknown version)'}")
    return 0


def run_command(path, args):
    import structlog

    from .settings import Settings
    from .sql_text import scan

    logger = structlog.get_logger("dbexplorer")
    executor = _executor(args, logger)
    if executor is None:
        return 2
    row_limit = Settings().row_limit()

    failures = 0
    for statement in scan(_read(path)):
        result = executor.run(statement.text, row_limit=row_limit)
        if result.error:
            failures += 1
            logger.error("statement_failed", sql=statement.text[:200], error=result.error.message)
            continue
        if result.columns:
            print("\t".join(result.columns))
            for row in result.rows:
                print("\t".join("" if value is None else str(value) for value in row))
        logger.info(
            "statement_finished",
            rows=len(result.rows) if result.columns else result.row_count,
            duration_ms=result.duration_ms,
            truncated=result.truncated,
        )
    return 1 if failures else 0


def main():
    """Main entry point with argument handling."""
    from .log import configure_logging

    args = sys.argv[1:]
    configure_logging(verbose="--verbose" in args or "-v" in args)

    if not args or "--help" in args or "-h" in args:
        print(USAGE)
        sys.exit(0)

    if "--split" in args:
        sys.exit(split_command(_option(args, "--split")))
    if "--format" in args:
        sys.exit(format_command(_option(args, "--format")))
    if "--check" in args:
        sys.exit(check_command(args))
    if "--run" in args:
        sys.exit(run_command(_option(args, "--run"), args))

    print(USAGE)
    sys.exit(2)


if __name__ == "__main__":
    main()
