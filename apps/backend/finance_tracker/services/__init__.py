"""
Services package

Recurring-schedule business logic:

- ``recurrence``: next-due-date evaluation (pure)
- ``schedule_lifecycle``: due detection, termination, rule edits (pure)
- ``schedule_store``: storage gateway consumed by the processor
- ``recurring_processor``: due-occurrence processing cycle
- ``recurring_schedule_service``: create/update/delete/lookup
- ``scheduler``: periodic trigger for processing cycles
"""
