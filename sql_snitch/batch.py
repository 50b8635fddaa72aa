import logging
import subprocess

import pyodbc

from sql_snitch.errors import TargetError


# Failures that belong to one target only. Anything else propagates.
TARGET_FAILURES = (TargetError, pyodbc.Error, OSError, subprocess.CalledProcessError)


def for_each_target(targets, action, report=None):
    """Run ``action(target)`` for each target in turn and concatenate the rows.

    A failing target is logged as a warning and skipped so one bad server
    does not end the batch.
    """
    results = []
    for target in targets:
        try:
            rows = action(target)
        except TARGET_FAILURES as e:
            message = e.message if isinstance(e, TargetError) else str(e)
            logging.warning(f"Failure on {target}: {message}")
            if report is not None:
                report.warning(f"{target}: {message}")
            continue
        results.extend(rows or [])
        if report is not None:
            report.success(f"{target}: {len(rows or [])} rows")
    return results
