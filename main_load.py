"""CLI entry point for the Redshift writer.

Usage:
    python3 main_load.py --data /data

Reads <data>/config.json, runs the configured action and prints its JSON
result on stdout.

Exit codes:
    0  success
    1  user error (configuration, data, credentials)
    2  internal error
"""

from __future__ import annotations

# cli_common sets sys.path; must be imported before any other project modules.
import cli_common

import argparse
import json
import logging
import sys

from errors import InternalError, UserError
from orchestration.application import Action, WriterApplication
from orchestration.table_config import TableConfigLoader

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Redshift writer: load S3 exports into Redshift tables")
    parser.add_argument("-d", "--data", type=str, help="Data folder holding config.json and in/tables/")
    args = parser.parse_args(argv)

    action = Action.RUN.value
    logging_ready = False
    app: WriterApplication | None = None

    try:
        if not args.data:
            raise UserError("Data folder not set.")

        loader = TableConfigLoader(args.data)
        raw = loader.read_raw()
        action = raw.get("action") or Action.RUN.value

        # Non-run actions answer on stdout only
        cli_common.setup_logging(quiet=action != Action.RUN.value)
        logging_ready = True

        app = WriterApplication(loader.load(raw))
        result = app.run()
        print(json.dumps(result.to_dict()))
        return 0

    except UserError as e:
        if not logging_ready:
            cli_common.setup_logging()
        logger.error("%s", e.message, extra={"metadata": e.data})
        if action != Action.RUN.value:
            print(e.message)
        return e.exit_code
    except InternalError as e:
        if not logging_ready:
            cli_common.setup_logging()
        logger.error("%s", e.message, extra={"metadata": e.data})
        return e.exit_code if e.exit_code > 1 else 2
    except Exception:
        if not logging_ready:
            cli_common.setup_logging()
        logger.exception("Unexpected failure")
        return 2
    finally:
        if app is not None and app.has_session:
            cli_common.shutdown(app.session)


if __name__ == "__main__":
    sys.exit(main())
