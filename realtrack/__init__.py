"""
realtrack
~~~~~~~~~

实时位置共享后端 —— 房间、在线状态与目的地协同引擎。
"""

__version__ = "0.1.0"
