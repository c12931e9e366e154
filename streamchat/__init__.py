"""
streamchat
~~~~~~~~~~

直播间实时聊天后端：房间成员管理、消息持久化与广播。
"""
__version__ = "0.1.0"
