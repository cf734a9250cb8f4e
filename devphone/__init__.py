"""
Dev Phone

Provisions a throwaway Twilio softphone (conversation, call history store,
webhook backend, TwiML App and access token) for one development session and
cleans it up again on exit.
"""

__version__ = "1.0.0"
