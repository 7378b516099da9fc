"""caldav-tasks: a local-first task manager that syncs with CalDAV servers."""

from caldav_tasks.version import get_version

__version__ = get_version()
