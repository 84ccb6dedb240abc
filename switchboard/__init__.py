"""
Switchboard

Routes Feishu chat queries to deterministic rules, workflows and
capabilities, falling back to a reasoning agent.
"""

__version__ = "0.1.0"
