"""
Availability resolution

- Interval arithmetic shared by generation and validation (intervals.py)
- Read queries and the guarded booking insert (queries.py)
- Slot generation for a day (slots.py)
- Booking-time slot validation (validation.py)
- Booking orchestration (booking.py)
"""
