"""Realtime row-change notifications."""

from .change_feed import ChangeEvent, ChangeFeed, ChangeType, RedisChangeRelay, Subscription, publish_change

__all__ = ["ChangeEvent", "ChangeFeed", "ChangeType", "RedisChangeRelay", "Subscription", "publish_change"]
