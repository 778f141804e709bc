"""
whisperd - supervisor for a local whisper.cpp transcription server.

Starts the server binary, waits for it to answer its health check, relays
its output into logging, notices crashes and stops it with a graceful
shutdown that escalates to a kill.
"""

__version__ = "0.1.0"
