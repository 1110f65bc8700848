"""
Kind services sitting between the Discord surfaces and the expiration engine.

- **quarantine_service.py**: Quarantine setup, add, remove and duration changes.
- **poll_service.py**: Poll creation, voting and results.
- **giveaway_service.py**: Giveaway creation, entry, end and reroll.
- **audit_service.py**: Audit rows and mod-log channel messages.
"""
