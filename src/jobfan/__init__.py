"""
jobfan - run a command template once per input item, locally or over ssh.
"""

__version__ = "1.0.0"
