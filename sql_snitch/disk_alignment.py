"""Partition alignment audit.

Partitions are read from Win32_DiskPartition on each computer and their
starting offsets are checked against the common storage stripe sizes. By
default only partitions whose drive hosts SQL Server files are reported;
the SQL instances are discovered from the computer's running services.
"""
import logging
import re

from sql_snitch.batch import TARGET_FAILURES
from sql_snitch.cim import query_class, run_command
from sql_snitch.db_connect import query_dict


KB = 1024
GB = 1024 ** 3

STRIPE_SIZES_KB = (64, 128, 256, 512, 1024)

PARTITION_PROPERTIES = (
    "BlockSize",
    "BootPartition",
    "DeviceID",
    "DiskIndex",
    "Index",
    "Name",
    "NumberOfBlocks",
    "Size",
    "StartingOffset",
    "Type",
)

DEVICE_ID = re.compile(r'DeviceID="([^"]+)"')
SQL_SERVICE = re.compile(r"^MSSQL\$(.+)$", re.IGNORECASE)


def _int(value):
    return int(value) if value not in (None, "") else 0


def is_offset_best_practice(offset):
    if offset <= 0:
        return False
    return offset in [size * KB for size in STRIPE_SIZES_KB] or offset % (1024 * KB) == 0


def alignment_rows(partition, computer, drive_letter=None):
    #"""One row per candidate stripe size with the modulo check for this partition."""
    offset = _int(partition.get("StartingOffset"))
    partition_type = partition.get("Type") or ""
    base = {
        "ComputerName": computer,
        "Name": partition.get("Name"),
        "DriveLetter": drive_letter,
        "DiskIndex": _int(partition.get("DiskIndex")),
        "PartitionSizeGB": round(_int(partition.get("Size")) / GB, 2),
        "PartitionType": partition_type,
        "BootPartition": (partition.get("BootPartition") or "").upper() == "TRUE",
        "BlockSize": _int(partition.get("BlockSize")),
        "NumberOfBlocks": _int(partition.get("NumberOfBlocks")),
        "StartingOffsetKB": offset / KB,
        "IsOffsetBestPractice": is_offset_best_practice(offset),
        "IsDynamicDisk": "logical disk manager" in partition_type.lower(),
    }
    rows = []
    for size in STRIPE_SIZES_KB:
        modulo = offset % (size * KB)
        rows.append(dict(
            base,
            TestingStripeSizeKB=size,
            OffsetModuloKB=modulo / KB,
            IsBestPractice=offset > 0 and modulo == 0,
        ))
    return rows


def drive_letters_by_partition(computer, runner=run_command):
    mapping = {}
    for link in query_class(computer, "Win32_LogicalDiskToPartition", ("Antecedent", "Dependent"), runner):
        partition = DEVICE_ID.search(link.get("Antecedent") or "")
        drive = DEVICE_ID.search(link.get("Dependent") or "")
        if partition and drive:
            mapping[partition.group(1)] = drive.group(1).upper()
    return mapping


def sql_instances(computer, runner=run_command):
    """Instance names of the running SQL Server engine services on ``computer``."""
    instances = []
    for service in query_class(computer, "Win32_Service", ("Name", "State"), runner):
        name = service.get("Name") or ""
        if (service.get("State") or "").lower() != "running":
            continue
        if name.upper() == "MSSQLSERVER":
            instances.append(computer)
            continue
        match = SQL_SERVICE.match(name)
        if match:
            instances.append(f"{computer}\\{match.group(1)}")
    return instances


def sql_drive_letters(computer, connect, runner=run_command, out=None):
    #"""Drive letters holding any database file of any running instance. Unreachable instances are warned about and skipped."""
    out = out or logging.warning
    drives = set()
    for instance in sql_instances(computer, runner):
        try:
            with connect(instance) as conn:
                rows = query_dict(conn, "SELECT DISTINCT physical_name FROM sys.master_files")
        except TARGET_FAILURES as e:
            out(f"⚠️ {instance}: could not read database file locations: {e}")
            continue
        for row in rows:
            path = row["physical_name"] or ""
            if re.match(r"^[A-Za-z]:", path):
                drives.add(path[:2].upper())
    return drives


def audit_disk_alignment(computer, connect=None, no_sql_check=False, runner=run_command, out=None):
    partitions = query_class(computer, "Win32_DiskPartition", PARTITION_PROPERTIES, runner)
    letters = drive_letters_by_partition(computer, runner)

    sql_drives = None
    if not no_sql_check:
        sql_drives = sql_drive_letters(computer, connect, runner, out)
        logging.info(f"{computer}: SQL Server files found on {sorted(sql_drives) or 'no drives'}")

    rows = []
    for partition in partitions:
        drive = letters.get(partition.get("DeviceID"))
        if sql_drives is not None and drive not in sql_drives:
            continue
        rows.extend(alignment_rows(partition, computer, drive))
    return rows
