"""
notequeue: priority job queue for long-running note generation.

Jobs are durable rows claimed atomically by a bounded worker pool. Clients
either enqueue and watch the change feed, or go through the facade and await
the result inline. Priority comes from the user's subscription tier.
"""
