"""SkillWave — peer-to-peer student help-request marketplace.

Students post help requests, peers accept and complete them, and the
two participants chat in real time with file attachments, notifications,
and an AI-assisted chatbot sidebar.
"""

__version__ = "0.1.0"
