"""
Job Scheduler Test Suite.

- Entities and host roster
- Capacity parsing and slot pools
- Local and remote backends, ssh transport
- Retry policy
- Scheduler dispatch, cancellation and concurrency cap
- Result collection and end-to-end runs
"""
