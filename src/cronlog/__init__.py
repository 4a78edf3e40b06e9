"""
cronlog: hourly log archiving with pluggable storage backends.

Partitions each day into 24 hour slots, archives every slot's records to a
local artifact and ships it to local disk, S3, GCS or Azure Blob Storage on a
cron schedule, with retries and time-based retention.
"""

__version__ = "0.1.0"
