"""
Job queue test suite.

- Queue contract (enqueue, claim, ack, nack, cancel, status)
- Lease recovery and retention
- Dispatcher worker pool
- SchedulerService wiring
"""
