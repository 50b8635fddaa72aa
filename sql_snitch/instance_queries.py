"""Read-only diagnostic queries that can be run against any instance by name."""
from sql_snitch.db_connect import instance_columns, query_dict
from sql_snitch.errors import ValidationError


QUERIES = {
    "version-info": """
        SELECT @@SERVERNAME AS [Server Name], @@VERSION AS [SQL Server and OS Version Info]
    """,
    "server-properties": """
        SELECT SERVERPROPERTY('MachineName') AS MachineName,
               SERVERPROPERTY('ServerName') AS ServerName,
               SERVERPROPERTY('InstanceName') AS Instance,
               SERVERPROPERTY('IsClustered') AS IsClustered,
               SERVERPROPERTY('Edition') AS Edition,
               SERVERPROPERTY('ProductLevel') AS ProductLevel,
               SERVERPROPERTY('ProductUpdateLevel') AS ProductUpdateLevel,
               SERVERPROPERTY('ProductVersion') AS ProductVersion,
               SERVERPROPERTY('Collation') AS Collation,
               SERVERPROPERTY('IsIntegratedSecurityOnly') AS IsIntegratedSecurityOnly,
               SERVERPROPERTY('IsHadrEnabled') AS IsHadrEnabled,
               SERVERPROPERTY('InstanceDefaultDataPath') AS InstanceDefaultDataPath,
               SERVERPROPERTY('InstanceDefaultLogPath') AS InstanceDefaultLogPath,
               SERVERPROPERTY('ErrorLogFileName') AS ErrorLogFileName
    """,
    "configuration-values": """
        SELECT name, value, value_in_use, minimum, maximum, [description], is_dynamic, is_advanced
        FROM sys.configurations WITH (NOLOCK)
        ORDER BY name OPTION (RECOMPILE)
    """,
    "process-memory": """
        SELECT physical_memory_in_use_kb / 1024 AS [SQL Server Memory Usage (MB)],
               locked_page_allocations_kb / 1024 AS [SQL Server Locked Pages Allocation (MB)],
               large_page_allocations_kb / 1024 AS [SQL Server Large Pages Allocation (MB)],
               page_fault_count, memory_utilization_percentage, available_commit_limit_kb,
               process_physical_memory_low, process_virtual_memory_low
        FROM sys.dm_os_process_memory WITH (NOLOCK) OPTION (RECOMPILE)
    """,
    "services": """
        SELECT servicename, process_id, startup_type_desc, status_desc,
               last_startup_time, service_account, is_clustered, cluster_nodename, [filename],
               instant_file_initialization_enabled
        FROM sys.dm_server_services WITH (NOLOCK) OPTION (RECOMPILE)
    """,
    "agent-jobs": """
        SELECT sj.name AS [Job Name], sj.[description] AS [Job Description],
               SUSER_SNAME(sj.owner_sid) AS [Job Owner], sj.date_created AS [Date Created],
               sj.[enabled] AS [Job Enabled], sj.notify_email_operator_id, sj.notify_level_email,
               sc.name AS [CategoryName], s.[enabled] AS [Sched Enabled],
               js.next_run_date, js.next_run_time
        FROM msdb.dbo.sysjobs AS sj WITH (NOLOCK)
        INNER JOIN msdb.dbo.syscategories AS sc WITH (NOLOCK) ON sj.category_id = sc.category_id
        LEFT OUTER JOIN msdb.dbo.sysjobschedules AS js WITH (NOLOCK) ON sj.job_id = js.job_id
        LEFT OUTER JOIN msdb.dbo.sysschedules AS s WITH (NOLOCK) ON js.schedule_id = s.schedule_id
        ORDER BY sj.name OPTION (RECOMPILE)
    """,
    "agent-alerts": """
        SELECT name, event_source, message_id, severity, [enabled], has_notification,
               delay_between_responses, occurrence_count, last_occurrence_date, last_occurrence_time
        FROM msdb.dbo.sysalerts WITH (NOLOCK)
        ORDER BY name OPTION (RECOMPILE)
    """,
    "system-memory": """
        SELECT total_physical_memory_kb / 1024 AS [Physical Memory (MB)],
               available_physical_memory_kb / 1024 AS [Available Memory (MB)],
               total_page_file_kb / 1024 AS [Page File Commit Limit (MB)],
               available_page_file_kb / 1024 AS [Available Page File (MB)],
               system_cache_kb / 1024 AS [System Cache (MB)],
               system_memory_state_desc AS [System Memory State]
        FROM sys.dm_os_sys_memory WITH (NOLOCK) OPTION (RECOMPILE)
    """,
    "active-queries": """
        SELECT r.session_id, r.status, r.command, r.cpu_time, r.total_elapsed_time, t.text
        FROM sys.dm_exec_requests AS r
        CROSS APPLY sys.dm_exec_sql_text(r.sql_handle) AS t
    """,
    "change-tracking": """
        SELECT d.name AS [Database Name], t.*
        FROM sys.change_tracking_databases AS t
        INNER JOIN sys.databases AS d ON d.database_id = t.database_id
    """,
    # heap or clustered index
    "table-compression": """
        SELECT t.name AS [Table], i.name AS [Index],
               p.partition_number AS [Partition], p.data_compression_desc AS [Compression]
        FROM sys.partitions AS p
        INNER JOIN sys.tables AS t ON t.object_id = p.object_id
        INNER JOIN sys.indexes AS i ON i.object_id = p.object_id AND i.index_id = p.index_id
        WHERE p.index_id IN (0, 1)
    """,
    "index-compression": """
        SELECT t.name AS [Table], i.name AS [Index],
               p.partition_number AS [Partition], p.data_compression_desc AS [Compression]
        FROM sys.partitions AS p
        INNER JOIN sys.tables AS t ON t.object_id = p.object_id
        INNER JOIN sys.indexes AS i ON i.object_id = p.object_id AND i.index_id = p.index_id
        WHERE p.index_id NOT IN (0, 1)
    """,
    # tables whose indexes live on more than one kind of data space
    "unaligned-partition-indexes": """
        SELECT ISNULL(DB_NAME(s.database_id), DB_NAME()) AS DBName,
               OBJECT_SCHEMA_NAME(i.object_id, DB_ID()) AS SchemaName,
               o.name AS [Object_Name], i.name AS Index_name, i.type_desc AS Type_Desc,
               ds.name AS DataSpaceName, ds.type_desc AS DataSpaceTypeDesc,
               s.user_seeks, s.user_scans, s.user_lookups, s.user_updates,
               s.last_user_seek, s.last_user_update
        FROM sys.objects AS o
        JOIN sys.indexes AS i ON o.object_id = i.object_id
        JOIN sys.data_spaces AS ds ON ds.data_space_id = i.data_space_id
        LEFT OUTER JOIN sys.dm_db_index_usage_stats AS s
            ON i.object_id = s.object_id AND i.index_id = s.index_id AND s.database_id = DB_ID()
        WHERE o.type = 'u'
          AND i.type IN (1, 2)
          AND o.object_id IN (
              SELECT a.object_id FROM (
                  SELECT ob.object_id, ds.type_desc
                  FROM sys.objects AS ob
                  JOIN sys.indexes AS ind ON ind.object_id = ob.object_id
                  JOIN sys.data_spaces AS ds ON ds.data_space_id = ind.data_space_id
                  GROUP BY ob.object_id, ds.type_desc
              ) AS a
              GROUP BY a.object_id
              HAVING COUNT(*) > 1
          )
        ORDER BY [Object_Name] DESC
    """,
    "file-stats": """
        SELECT LEFT(mf.physical_name, 2) AS Drive,
               DB_NAME(vfs.database_id) AS database_name, mf.state_desc,
               mf.physical_name, mf.name AS logical_name,
               CONVERT(DECIMAL(20, 2), CONVERT(DECIMAL, mf.size) / 128) AS file_size_MB,
               rm.recovery_model_desc, rm.compatibility_level,
               CASE mf.is_percent_growth
                   WHEN 1 THEN CONVERT(VARCHAR, mf.growth) + '%'
                   ELSE CONVERT(VARCHAR, mf.growth / 128) + ' MB'
               END AS growth_in_increment_of,
               CASE mf.max_size
                   WHEN 0 THEN 'No growth is allowed'
                   WHEN -1 THEN 'File will grow until the disk is full'
                   ELSE CONVERT(VARCHAR, mf.max_size)
               END AS max_size,
               CASE WHEN num_of_reads = 0 THEN 0 ELSE io_stall_read_ms / num_of_reads END AS AVGReadLatency_ms,
               CASE WHEN num_of_writes = 0 THEN 0 ELSE io_stall_write_ms / num_of_writes END AS AVGWriteLatency_ms,
               CASE WHEN num_of_reads = 0 AND num_of_writes = 0 THEN 0
                    ELSE io_stall / (num_of_reads + num_of_writes) END AS AVGTotalLatency_ms,
               CASE WHEN num_of_reads = 0 THEN 0 ELSE num_of_bytes_read / num_of_reads END AS AvgBytesPerRead,
               CASE WHEN num_of_writes = 0 THEN 0 ELSE num_of_bytes_written / num_of_writes END AS AvgBytesPerWrite
        FROM sys.dm_io_virtual_file_stats(NULL, NULL) AS vfs
        JOIN sys.master_files AS mf ON vfs.database_id = mf.database_id AND vfs.file_id = mf.file_id
        JOIN sys.databases AS rm ON vfs.database_id = rm.database_id
        ORDER BY vfs.database_id
    """,
    "suspect-pages": """
        SELECT DB_NAME(database_id) AS [Database Name], [file_id], page_id,
               event_type, error_count, last_update_date
        FROM msdb.dbo.suspect_pages WITH (NOLOCK)
        ORDER BY database_id OPTION (RECOMPILE)
    """,
}


def check_query_name(name):
    if name not in QUERIES:
        raise ValidationError(f"Unknown query {name!r}. Valid queries: {', '.join(sorted(QUERIES))}")
    return name


def run_query(conn, server, name):
    sql = QUERIES[check_query_name(name)]
    columns = instance_columns(server)
    return [dict(columns, **row) for row in query_dict(conn, sql)]
