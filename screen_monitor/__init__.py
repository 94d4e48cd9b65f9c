"""
Screen Monitor
--------------
Watches a stream of screen captures for known visual templates.

Entry points:
- screen_monitor.main.bootstrap(): wire and start a MonitorNode
- MonitorNode.on_frame_available(): feed raw RGBA frames
"""

__version__ = "0.1.0"
