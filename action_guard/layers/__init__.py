"""
Architecture layers:
- validation: is a scheduled action still relevant?
- orchestration: when, whether and how it gets executed
"""
