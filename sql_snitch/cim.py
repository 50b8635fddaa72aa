import logging
import re
import subprocess

from sql_snitch.errors import ValidationError


COMPUTER_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
LOCAL_NAMES = ("localhost", ".", "127.0.0.1")


def run_command(command):
    #"""Run a wmic command line and return stdout. Raises CalledProcessError on a non-zero exit."""
    result = subprocess.run(command, shell=True, capture_output=True, text=True, check=True)
    return result.stdout


def check_computer_name(computer):
    if not COMPUTER_PATTERN.match(computer or ""):
        raise ValidationError(f"Invalid computer name {computer!r}. Use the host name only, without an instance")
    return computer


def wmic_command(computer, wmi_class, properties):
    check_computer_name(computer)
    node = "" if computer.lower() in LOCAL_NAMES else f'/node:"{computer}" '
    return f"wmic {node}path {wmi_class} get {','.join(properties)} /format:list"


def parse_list_output(output):
    """Parse ``/format:list`` output into a list of dicts, one per instance.

    wmic ends lines with ``\\r\\r\\n``, which universal newlines turn into an
    extra blank line after every property, so blank lines are ignored. A new
    instance starts when a property name repeats. Empty values become None.
    """
    records = []
    current = {}
    for line in output.replace("\r", "").split("\n"):
        match = re.match(r"^(\w+)=(.*)$", line.strip())
        if not match:
            continue
        key, value = match.groups()
        if key in current:
            records.append(current)
            current = {}
        current[key] = value.strip() or None
    if current:
        records.append(current)
    return records


def query_class(computer, wmi_class, properties, runner=run_command):
    command = wmic_command(computer, wmi_class, properties)
    logging.debug(f"CIM query: {command}")
    return parse_list_output(runner(command))
