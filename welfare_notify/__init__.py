"""
welfare_notify — SMS notifier for welfare recipients.

Daily weather and air quality, custom reminders, operator notices and
emergency disaster alerts, delivered by text message.
"""

__version__ = "1.0.0"
