"""Package marker for the queue service.

Ordered service-ticket queue with dense ranks and delayed removal
of completed entries.
"""

__version__ = "1.0.0"
