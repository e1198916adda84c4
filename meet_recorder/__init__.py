"""
Meet Recorder - autonomous meeting recording bot.

This package provides:
- A session controller that joins a Google Meet call and waits for admission
- Participant presence tracking and speaker diarization from UI observations
- Supervision of the external ffmpeg capture process
- Automatic leave decisions (alone, kicked, max duration, inactivity)
"""

__version__ = "0.1.0"
