"""
SlackBridge - Slack Adapter Plugin Host

Posts host messages into Slack channels and relays bot mentions back into
the host publish bus through a small plugin system.
"""

__version__ = "1.0.0"
__author__ = "SlackBridge Team"
