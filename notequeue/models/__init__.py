from .enums import (
    JobType as JobType,
    JobStatus as JobStatus,
    JobPriority as JobPriority,
    JobEventType as JobEventType,
    SubscriptionTier as SubscriptionTier,
)
from .jobs import Job as Job, JobEvent as JobEvent
