"""
Services Module
Messaging gateway, repositories and the resume worker
"""

# Collaborator contracts
from .contracts import (
    MessagingGateway,
    ChannelRepository,
    GraphRepository,
    ExecutionStateRepository,
    ProcessedMessageRepository,
    ResumeScheduler,
)

# WhatsApp Cloud API
from .whatsapp import WhatsAppCloudService, create_whatsapp_service

# Supabase repositories
from .database import (
    SupabaseChannelRepository,
    SupabaseGraphRepository,
    SupabaseExecutionStateRepository,
    SupabaseProcessedMessageRepository,
    SupabaseResumeScheduler,
)

# In-memory repositories
from .memory_store import (
    InMemoryChannelRepository,
    InMemoryGraphRepository,
    InMemoryExecutionStateRepository,
    InMemoryProcessedMessageRepository,
    InMemoryResumeScheduler,
)

# Delay continuations
from .resume_worker import ResumeWorker

__all__ = [
    # Contracts
    "MessagingGateway",
    "ChannelRepository",
    "GraphRepository",
    "ExecutionStateRepository",
    "ProcessedMessageRepository",
    "ResumeScheduler",

    # WhatsApp
    "WhatsAppCloudService",
    "create_whatsapp_service",

    # Supabase
    "SupabaseChannelRepository",
    "SupabaseGraphRepository",
    "SupabaseExecutionStateRepository",
    "SupabaseProcessedMessageRepository",
    "SupabaseResumeScheduler",

    # In-memory
    "InMemoryChannelRepository",
    "InMemoryGraphRepository",
    "InMemoryExecutionStateRepository",
    "InMemoryProcessedMessageRepository",
    "InMemoryResumeScheduler",

    # Worker
    "ResumeWorker",
]
