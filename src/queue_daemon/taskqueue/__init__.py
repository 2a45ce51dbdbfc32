"""Task queue store for the daemon.

The queue is a single SQLite table. A task is available while its ``claimed``
flag is NULL/false; the supervisor flips it with a compare-and-set UPDATE, and
the worker process that executed the task deletes the row afterwards. There is
no terminal failure state: a task is attempted once and then disappears.
"""
